"""Operator tables shared by the parser, the evaluator and the formatter.

Operators are sugar over the function catalog: `a+b` evaluates exactly like
`ADD(a, b)`, so each operator maps to a catalog name.
"""

COMPARISON_OPERATORS: dict[str, str] = {
    "=": "EQ",
    "<": "LT",
    "<=": "LTE",
    ">": "GT",
    ">=": "GTE",
}

ADDITIVE_OPERATORS: dict[str, str] = {
    "+": "ADD",
    "-": "MINUS",
}

MULTIPLICATIVE_OPERATORS: dict[str, str] = {
    "*": "MULTIPLY",
    "/": "DIVIDE",
}

BINARY_OPERATORS: dict[str, str] = {
    **COMPARISON_OPERATORS,
    **ADDITIVE_OPERATORS,
    **MULTIPLICATIVE_OPERATORS,
}

UNARY_OPERATORS: dict[str, str] = {
    "-": "UNMINUS",
}

# Binding strength, low to high. Unary minus applies to a primary.
COMPARISON_PRECEDENCE = 1
ADDITIVE_PRECEDENCE = 2
MULTIPLICATIVE_PRECEDENCE = 3
UNARY_PRECEDENCE = 4
PRIMARY_PRECEDENCE = 5


def binary_precedence(operator: str) -> int:
    if operator in COMPARISON_OPERATORS:
        return COMPARISON_PRECEDENCE
    if operator in ADDITIVE_OPERATORS:
        return ADDITIVE_PRECEDENCE
    if operator in MULTIPLICATIVE_OPERATORS:
        return MULTIPLICATIVE_PRECEDENCE
    raise ValueError(f"Unknown operator: {operator}")
