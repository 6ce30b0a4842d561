from enum import Enum, auto
from typing import List, NamedTuple

from spreadsheet_engine.errors import FormulaSyntaxError
from spreadsheet_engine.utils import INVALID_REFERENCE


class TokenType(Enum):
    IDENTIFIER = auto()
    NUMBER = auto()
    OPERATOR = auto()
    LPAREN = auto()
    RPAREN = auto()
    COMMA = auto()
    COLON = auto()
    BOOLEAN = auto()
    STRING = auto()
    ERROR = auto()


class Token(NamedTuple):
    type: TokenType
    value: str
    position: int


def is_digit(char: str) -> bool:
    return "0" <= char <= "9"


def is_letter(char: str) -> bool:
    return char.isascii() and char.isalpha()


class ExcelTokenizer:
    TWO_CHAR_OPERATORS = {"<": {"="}, ">": {"="}}
    SINGLE_CHAR_TOKENS = {
        "(": TokenType.LPAREN,
        ")": TokenType.RPAREN,
        ",": TokenType.COMMA,
        ":": TokenType.COLON,
    }

    def __init__(self, formula: str):
        # Positions are offsets into the formula exactly as the user typed it,
        # so we skip whitespace instead of stripping it.
        self.formula = formula
        self.pos = 0
        self.length = len(self.formula)

    def tokenize(self) -> List[Token]:
        """Tokenize the formula and return list of tokens."""
        tokens = []
        while self.pos < self.length:
            char = self.formula[self.pos]

            if char.isspace():
                self.pos += 1
                continue
            elif char == '"':
                tokens.append(self._tokenize_string())
            elif is_digit(char) or char == ".":
                tokens.append(self._tokenize_number())
            elif is_letter(char) or char == "_" or char == "$":
                tokens.append(self._tokenize_identifier())
            elif char == "#":
                tokens.append(self._tokenize_error())
            elif char in "+-*/=<>":
                tokens.append(self._tokenize_operator())
            elif char in self.SINGLE_CHAR_TOKENS:
                tokens.append(Token(self.SINGLE_CHAR_TOKENS[char], char, self.pos))
                self.pos += 1
            else:
                raise FormulaSyntaxError(f"Unexpected character '{char}'", self.pos)

        return tokens

    def _tokenize_identifier(self) -> Token:
        """Tokenize an identifier (function name or cell reference)."""
        start = self.pos
        while self.pos < self.length and (
            is_letter(self.formula[self.pos])
            or is_digit(self.formula[self.pos])
            or self.formula[self.pos] in "_$"
        ):
            self.pos += 1

        value = self.formula[start : self.pos]
        if value.upper() in ["TRUE", "FALSE"]:
            return Token(TokenType.BOOLEAN, value.upper(), start)
        else:
            return Token(TokenType.IDENTIFIER, value, start)

    def _tokenize_number(self) -> Token:
        """Tokenize a number (integer, decimal or scientific notation)."""
        start = self.pos
        seen_decimal = False
        has_digits = False
        seen_exponent = False

        while self.pos < self.length:
            char = self.formula[self.pos]

            if is_digit(char):
                has_digits = True
                self.pos += 1
            elif char == "." and not seen_decimal and not seen_exponent:
                seen_decimal = True
                self.pos += 1
            elif char == ".":
                raise FormulaSyntaxError("Invalid number: multiple decimal points", start)
            elif char in "eE" and not seen_exponent and has_digits:
                seen_exponent = True
                self.pos += 1
                if self.pos < self.length and self.formula[self.pos] in "+-":
                    self.pos += 1
                # Must have at least one digit after e/E
                if self.pos >= self.length or not is_digit(self.formula[self.pos]):
                    raise FormulaSyntaxError(
                        "Invalid scientific notation: missing exponent", start
                    )
            else:
                break

        value = self.formula[start : self.pos]

        if not has_digits:
            raise FormulaSyntaxError("Invalid number: no digits", start)
        # "2A" is neither a number nor a reference
        if self.pos < self.length and (
            is_letter(self.formula[self.pos]) or self.formula[self.pos] in "_$"
        ):
            raise FormulaSyntaxError("Delimiter expected", start)

        return Token(TokenType.NUMBER, value, start)

    def _tokenize_error(self) -> Token:
        """Tokenize the "#REF!" left behind by a reference copied off the grid."""
        start = self.pos
        end = start + len(INVALID_REFERENCE)
        if self.formula[start:end].upper() != INVALID_REFERENCE:
            raise FormulaSyntaxError("Unexpected character '#'", start)
        self.pos = end
        return Token(TokenType.ERROR, INVALID_REFERENCE, start)

    def _tokenize_operator(self) -> Token:
        """Tokenize an operator (+, -, *, /, =, <, >, <=, >=)."""
        start = self.pos
        current_char = self.formula[self.pos]
        next_char = self.formula[self.pos + 1] if self.pos + 1 < self.length else None

        if (
            next_char
            and current_char in self.TWO_CHAR_OPERATORS
            and next_char in self.TWO_CHAR_OPERATORS[current_char]
        ):
            self.pos += 2
            value = self.formula[start : self.pos]
        else:
            self.pos += 1
            value = current_char

        return Token(TokenType.OPERATOR, value, start)

    def _tokenize_string(self) -> Token:
        """Tokenize a text literal.
        Rules:
        1. Text starts and ends with double quotes
        2. Double quotes inside text are escaped by doubling them
        """
        start = self.pos
        self.pos += 1  # Skip opening quote
        value = []
        while self.pos < self.length:
            char = self.formula[self.pos]
            if char == '"':
                self.pos += 1
                if self.pos < self.length and self.formula[self.pos] == '"':
                    value.append('"')
                    self.pos += 1
                else:
                    break
            else:
                value.append(char)
                self.pos += 1
        else:
            raise FormulaSyntaxError("Unterminated string literal", start)

        return Token(TokenType.STRING, "".join(value), start)
