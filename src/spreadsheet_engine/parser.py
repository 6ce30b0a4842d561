from typing import Callable, List, Optional

from rapidfuzz import fuzz, process

from spreadsheet_engine.errors import FormulaSyntaxError
from spreadsheet_engine.functions import EXCEL_FUNCTIONS
from spreadsheet_engine.types import parse_number
from .tokenizer import Token, TokenType, ExcelTokenizer
from .ast import (
    ASTNode,
    BinaryOperation,
    CellRange,
    CellReference,
    Constant,
    ExcelFunction,
    UnaryOperation,
)
from .operators import (
    ADDITIVE_OPERATORS,
    COMPARISON_OPERATORS,
    MULTIPLICATIVE_OPERATORS,
    UNARY_OPERATORS,
)
from .utils import extract_cell_reference


def parse_formula(formula: str) -> Optional[ASTNode]:
    """Parse a formula string into an AST.

    Returns None for a blank formula, which means "no formula".
    """
    if not formula.strip():
        return None
    tokens = ExcelTokenizer(formula).tokenize()
    return ExcelParser(tokens, len(formula)).parse()


def suggest_function(name: str) -> Optional[str]:
    """Return the catalog function name closest to `name`, if any is close."""
    match = process.extractOne(
        name.upper(), EXCEL_FUNCTIONS.keys(), scorer=fuzz.ratio, score_cutoff=70
    )
    return match[0] if match else None


class ExcelParser:
    def __init__(self, tokens: List[Token], length: Optional[int] = None):
        self.tokens = tokens
        self.current = 0
        # Offset reported for errors at the end of the formula
        self.end_position = (
            length
            if length is not None
            else (tokens[-1].position + len(tokens[-1].value) if tokens else 0)
        )

    def parse(self) -> ASTNode:
        """Parse tokens into an AST, requiring every token to be consumed."""
        self.current = 0
        expr = self.parse_expression()
        trailing = self.peek()
        if trailing is not None:
            raise FormulaSyntaxError(
                f"Unexpected '{trailing.value}'", trailing.position
            )
        return expr

    def peek(self) -> Optional[Token]:
        """Look at the current token without consuming it."""
        if self.current >= len(self.tokens):
            return None
        return self.tokens[self.current]

    def read(self) -> Token:
        """Consume and return the current token."""
        if self.current >= len(self.tokens):
            raise FormulaSyntaxError("Unexpected end of formula", self.end_position)
        tok = self.tokens[self.current]
        self.current += 1
        return tok

    def read_if_match(self, *types: TokenType) -> Optional[Token]:
        """Consume and return current token if it matches any of the given types."""
        token = self.peek()
        if token is not None and token.type in types:
            self.current += 1
            return token
        return None

    def peek_operator(self, valid_operators) -> Optional[Token]:
        token = self.peek()
        if (
            token is not None
            and token.type == TokenType.OPERATOR
            and token.value in valid_operators
        ):
            return token
        return None

    def _parse_binary_operation(
        self, parse_operand: Callable[[], ASTNode], valid_operators
    ) -> ASTNode:
        """Parse a left-associative chain of binary operations."""
        left = parse_operand()

        while (next_tok := self.peek_operator(valid_operators)) is not None:
            self.read()  # consume operator
            right = parse_operand()
            left = BinaryOperation(
                left=left,
                operator=next_tok.value,
                right=right,
                position=next_tok.position,
            )

        return left

    def parse_expression(self) -> ASTNode:
        """Parse an expression (lowest precedence: comparisons)."""
        left = self.parse_additive()
        operator = self.peek_operator(COMPARISON_OPERATORS)
        if operator is None:
            return left
        self.read()
        right = self.parse_additive()
        # Comparisons are non-associative: "1<2<3" is rejected
        if (extra := self.peek_operator(COMPARISON_OPERATORS)) is not None:
            raise FormulaSyntaxError(
                f"Comparison operators cannot be chained ('{extra.value}')",
                extra.position,
            )
        return BinaryOperation(
            left=left, operator=operator.value, right=right, position=operator.position
        )

    def parse_additive(self) -> ASTNode:
        """Parse addition/subtraction (+, -)."""
        return self._parse_binary_operation(self.parse_term, ADDITIVE_OPERATORS)

    def parse_term(self) -> ASTNode:
        """Parse multiplication/division (*, /)."""
        return self._parse_binary_operation(self.parse_factor, MULTIPLICATIVE_OPERATORS)

    def parse_factor(self) -> ASTNode:
        """Parse a factor (highest precedence: literals, references, functions)."""
        token = self.peek()
        if token is None:
            raise FormulaSyntaxError("Unexpected end of formula", self.end_position)

        if token.type == TokenType.NUMBER:
            self.read()
            return Constant(parse_number(token.value), token.position)

        elif token.type == TokenType.STRING:
            self.read()
            return Constant(token.value, token.position)

        elif token.type == TokenType.BOOLEAN:
            self.read()
            return Constant(token.value == "TRUE", token.position)

        elif token.type in (TokenType.IDENTIFIER, TokenType.ERROR):
            return self.parse_identifier()

        elif token.type == TokenType.OPERATOR and token.value in UNARY_OPERATORS:
            operator = self.read()
            operand = self.parse_factor()
            return UnaryOperation(
                operator=operator.value, operand=operand, position=operator.position
            )

        elif token.type == TokenType.LPAREN:
            self.read()  # consume '('
            expr = self.parse_expression()
            self.expect(TokenType.RPAREN)
            return expr

        raise FormulaSyntaxError(f"Unexpected '{token.value}'", token.position)

    def parse_identifier(self) -> ASTNode:
        """Parse an identifier (function call, cell reference or range)."""
        token = self.read()

        next_token = self.peek()
        if (
            token.type == TokenType.IDENTIFIER
            and next_token
            and next_token.type == TokenType.LPAREN
        ):
            self.read()  # consume '('
            return self.parse_function_call(token)

        start_ref = self._reference(token)

        # Look ahead for ':' to check for range
        if colon := self.read_if_match(TokenType.COLON):
            end_token = self.peek()
            if end_token is None or end_token.type not in (
                TokenType.IDENTIFIER,
                TokenType.ERROR,
            ):
                raise FormulaSyntaxError(
                    "Expected cell reference after ':'",
                    end_token.position if end_token else self.end_position,
                )
            end_ref = self._reference(self.read())
            return CellRange(start=start_ref, end=end_ref, position=colon.position)

        return start_ref

    def _reference(self, token: Token) -> CellReference:
        if token.type == TokenType.ERROR:
            return CellReference.invalid(token.position)
        ref = extract_cell_reference(token.value, token.position)
        if not ref:
            raise FormulaSyntaxError(
                f"Invalid cell reference: {token.value}", token.position
            )
        return ref

    def parse_function_call(self, name_token: Token) -> ExcelFunction:
        """Parse a function call with its arguments."""
        name = name_token.value.upper()
        if name not in EXCEL_FUNCTIONS:
            suggestion = suggest_function(name)
            hint = f" (did you mean {suggestion}?)" if suggestion else ""
            raise FormulaSyntaxError(
                f"Unknown function {name_token.value}{hint}", name_token.position
            )

        args = []

        # Handle empty argument list
        if self.read_if_match(TokenType.RPAREN):
            return ExcelFunction(name=name, arguments=(), position=name_token.position)

        while True:
            args.append(self.parse_expression())

            next_tok = self.peek()
            if not next_tok:
                raise FormulaSyntaxError(
                    "Unexpected end of formula in function call", self.end_position
                )

            if next_tok.type == TokenType.RPAREN:
                self.read()  # consume ')'
                break

            if next_tok.type == TokenType.COMMA:
                self.read()  # consume ','
                continue

            raise FormulaSyntaxError(
                f"Expected ',' or ')' in function call, got '{next_tok.value}'",
                next_tok.position,
            )

        return ExcelFunction(
            name=name, arguments=tuple(args), position=name_token.position
        )

    def expect(self, *types: TokenType) -> Token:
        """Read and return the current token if it matches expected types, otherwise error."""
        token = self.read_if_match(*types)
        if token is None:
            curr = self.peek()
            type_names = " or ".join(t.name for t in types)
            raise FormulaSyntaxError(
                f"Expected {type_names}, got "
                f"{repr(curr.value) if curr else 'end of formula'}",
                curr.position if curr else self.end_position,
            )
        return token
