import inspect
import math
from collections import Counter
from typing import Any, Callable, Iterator, Optional, ParamSpec, overload

import numpy as np

from spreadsheet_engine.errors import (
    ArgumentTypeError,
    FormulaError,
    QuantityOfArgumentsError,
)
from spreadsheet_engine.types import (
    ScalarValue,
    Table,
    Value,
    ValueType,
    is_number,
    to_boolean,
    to_number,
    to_text,
    value_type,
)
from spreadsheet_engine.utils import cell_name

P = ParamSpec("P")

EXCEL_FUNCTIONS: dict[str, Callable[..., Value]] = {}

_rng = np.random.default_rng()
_int64 = np.iinfo(np.int64)

# 171! no longer fits in a float
MAX_FACTORIAL = 170


def _register(
    fn: Callable[..., Value],
    name: str,
    min_args: Optional[int] = None,
    tables: bool = False,
) -> None:
    params = inspect.signature(fn).parameters.values()
    positional = [p for p in params if p.kind is p.POSITIONAL_OR_KEYWORD]
    variadic = any(p.kind is p.VAR_POSITIONAL for p in params)
    required = sum(1 for p in positional if p.default is p.empty)

    EXCEL_FUNCTIONS[name] = fn
    setattr(fn, "_excel_fn_registered", True)
    setattr(fn, "_excel_fn_name", name)
    setattr(fn, "_excel_fn_min_args", required if min_args is None else min_args)
    setattr(fn, "_excel_fn_max_args", None if variadic else len(positional))
    setattr(fn, "_excel_fn_tables", tables)


@overload
def excel_fn(
    fn: Callable[P, Value],
    *,
    name: Optional[str] = None,
    min_args: Optional[int] = None,
    tables: bool = False,
) -> Callable[P, Value]: ...
@overload
def excel_fn(
    fn: None = None,
    *,
    name: Optional[str] = None,
    min_args: Optional[int] = None,
    tables: bool = False,
) -> Callable[[Callable[P, Value]], Callable[P, Value]]: ...


def excel_fn(
    fn: Callable[P, Value] | None = None,
    *,
    name: Optional[str] = None,
    min_args: Optional[int] = None,
    tables: bool = False,
) -> Any:
    """Decorator to register a function in the catalog.

    `min_args` overrides the minimum derived from the signature (for
    variadic functions that need at least N arguments). `tables` declares
    that the function consumes Table arguments; any other function given a
    Table fails with ArgumentTypeError before it runs.
    """

    def decorator(fn: Callable[P, Value]) -> Callable[P, Value]:
        # If used on a staticmethod, unwrap for registration but return the
        # original descriptor to preserve method semantics.
        if isinstance(fn, staticmethod):
            underlying = fn.__func__
            _register(underlying, name or underlying.__name__, min_args, tables)
            return fn  # type: ignore

        _register(fn, name or fn.__name__, min_args, tables)
        return fn

    if fn:
        return decorator(fn)
    else:
        return decorator


def check_arity(fn: Callable[..., Value], count: int) -> None:
    """Raise QuantityOfArgumentsError unless `count` arguments fit `fn`."""
    min_args = getattr(fn, "_excel_fn_min_args", 0)
    max_args = getattr(fn, "_excel_fn_max_args", None)
    if count < min_args or (max_args is not None and count > max_args):
        raise QuantityOfArgumentsError()


def accepts_tables(fn: Callable[..., Value]) -> bool:
    return getattr(fn, "_excel_fn_tables", False)


def _number(value: Value) -> float:
    if not is_number(value):
        raise ArgumentTypeError()
    return float(value)  # type: ignore[arg-type]


def _integer(value: Value) -> int:
    return math.trunc(_number(value))


def _text(value: Value) -> str:
    if not isinstance(value, str):
        raise ArgumentTypeError()
    return value


def _boolean(value: Value) -> bool:
    if not isinstance(value, bool):
        raise ArgumentTypeError()
    return value


def flatten_args(*args: Value) -> Iterator[ScalarValue]:
    """Lazily flatten arguments, walking Tables element by element.

    Empty cells inside a Table are skipped.
    """
    for arg in args:
        if isinstance(arg, Table):
            for value in arg.values():
                if value is not None:
                    yield value
        else:
            yield arg  # type: ignore[misc]


def flatten_numbers(*args: Value) -> Iterator[float]:
    """Like flatten_args, but every element must be a number."""
    for value in flatten_args(*args):
        yield _number(value)


def _comparable(a: Value, b: Value) -> None:
    """Ordering comparisons accept two numbers or two texts."""
    if not (
        (is_number(a) and is_number(b))
        or (isinstance(a, str) and isinstance(b, str))
    ):
        raise ArgumentTypeError()


def _table(value: Value) -> Table:
    if not isinstance(value, Table):
        raise ArgumentTypeError()
    return value


class ExcelFunctions:
    """Collection of catalog function implementations.

    Every function receives already-evaluated arguments and checks their
    types, then its domain. The argument count is checked by the evaluator
    before the call.
    """

    # Operators. `a+b` is evaluated as ADD(a, b), and so on.

    @staticmethod
    def ADD(a: Value, b: Value) -> Value:
        return _number(a) + _number(b)

    @staticmethod
    def MINUS(a: Value, b: Value) -> Value:
        return _number(a) - _number(b)

    @staticmethod
    def MULTIPLY(a: Value, b: Value) -> Value:
        return _number(a) * _number(b)

    @staticmethod
    def DIVIDE(a: Value, b: Value) -> Value:
        dividend, divisor = _number(a), _number(b)
        if divisor == 0:
            raise FormulaError("Division by zero")
        return dividend / divisor

    @staticmethod
    def UNMINUS(a: Value) -> Value:
        return -_number(a)

    @staticmethod
    def EQ(a: Value, b: Value) -> Value:
        """Equality of two values of the same type."""
        if value_type(a) != value_type(b):
            raise ArgumentTypeError()
        return a == b

    @staticmethod
    def GT(a: Value, b: Value) -> Value:
        _comparable(a, b)
        return a > b  # type: ignore[operator]

    @staticmethod
    def GTE(a: Value, b: Value) -> Value:
        _comparable(a, b)
        return a >= b  # type: ignore[operator]

    @staticmethod
    def LT(a: Value, b: Value) -> Value:
        _comparable(a, b)
        return a < b  # type: ignore[operator]

    @staticmethod
    def LTE(a: Value, b: Value) -> Value:
        _comparable(a, b)
        return a <= b  # type: ignore[operator]

    # Logical

    @staticmethod
    def NOT(value: Value) -> Value:
        """Return the logical NOT of the argument."""
        return not _boolean(value)

    @excel_fn(min_args=2)
    @staticmethod
    def AND(*values: Value) -> Value:
        return all([_boolean(v) for v in values])

    @excel_fn(min_args=2)
    @staticmethod
    def OR(*values: Value) -> Value:
        return any([_boolean(v) for v in values])

    @staticmethod
    def IF(condition: Value, true_value: Value, false_value: Value) -> Value:
        """Return true_value if condition is TRUE, false_value otherwise."""
        return true_value if _boolean(condition) else false_value

    @staticmethod
    def ISNUMBER(value: Value) -> Value:
        return is_number(value)

    @staticmethod
    def ISTEXT(value: Value) -> Value:
        return isinstance(value, str)

    @staticmethod
    def ISLOGICAL(value: Value) -> Value:
        return isinstance(value, bool)

    @staticmethod
    def ISEVEN(x: Value) -> Value:
        return _integer(x) % 2 == 0

    @staticmethod
    def ISODD(x: Value) -> Value:
        return _integer(x) % 2 == 1

    # Conversion

    @staticmethod
    def N(value: Value) -> Value:
        """Cast a value to a number; text must be numeric."""
        if value_type(value) not in (ValueType.NUMBER, ValueType.TEXT, ValueType.BOOLEAN):
            raise ArgumentTypeError()
        return to_number(value)

    @staticmethod
    def BOOLEAN(value: Value) -> Value:
        """Cast a value to boolean ("", "0" and "false" are FALSE)."""
        return to_boolean(value)

    @staticmethod
    def TEXT(value: Value) -> Value:
        """Cast a value to text."""
        return to_text(value)

    # Math

    @staticmethod
    def ABS(x: Value) -> Value:
        return abs(_number(x))

    @staticmethod
    def ACOS(x: Value) -> Value:
        num = _number(x)
        if not -1 <= num <= 1:
            raise FormulaError("ACOS requires an argument between -1 and 1")
        return math.acos(num)

    @staticmethod
    def ASIN(x: Value) -> Value:
        num = _number(x)
        if not -1 <= num <= 1:
            raise FormulaError("ASIN requires an argument between -1 and 1")
        return math.asin(num)

    @staticmethod
    def ATAN(x: Value) -> Value:
        return math.atan(_number(x))

    @staticmethod
    def ACOT(x: Value) -> Value:
        num = _number(x)
        if num == 0:
            raise FormulaError("ACOT is undefined at zero")
        return math.atan(1 / num)

    @staticmethod
    def COS(x: Value) -> Value:
        return math.cos(_number(x))

    @staticmethod
    def COT(x: Value) -> Value:
        num = _number(x)
        if math.sin(num) == 0:
            raise FormulaError("COT is undefined for this argument")
        return math.cos(num) / math.sin(num)

    @staticmethod
    def SIN(x: Value) -> Value:
        return math.sin(_number(x))

    @staticmethod
    def TAN(x: Value) -> Value:
        return math.tan(_number(x))

    @staticmethod
    def CEILING(x: Value) -> Value:
        return float(math.ceil(_number(x)))

    @staticmethod
    def FLOOR(x: Value) -> Value:
        return float(math.floor(_number(x)))

    @staticmethod
    def DEGREES(angle: Value) -> Value:
        """Converts radians into degrees."""
        return math.degrees(_number(angle))

    @staticmethod
    def RADIANS(angle: Value) -> Value:
        """Converts degrees into radians."""
        return math.radians(_number(angle))

    @staticmethod
    def EXP(x: Value) -> Value:
        """Return e raised to the power of x."""
        return math.exp(_number(x))

    @staticmethod
    def FACT(x: Value) -> Value:
        """Factorial of the integer part of x."""
        num = _integer(x)
        if num < 0:
            raise FormulaError("FACT requires a non-negative number")
        if num > MAX_FACTORIAL:
            raise FormulaError("FACT result is too large")
        return float(math.factorial(num))

    @staticmethod
    def GCD(x: Value, y: Value) -> Value:
        return float(math.gcd(_integer(x), _integer(y)))

    @staticmethod
    def LCM(x: Value, y: Value) -> Value:
        return float(math.lcm(_integer(x), _integer(y)))

    @staticmethod
    def LN(x: Value) -> Value:
        """Return the natural logarithm of x."""
        num = _number(x)
        if num <= 0:
            raise FormulaError("LN requires positive input")
        return math.log(num)

    @staticmethod
    def LOG10(x: Value) -> Value:
        num = _number(x)
        if num <= 0:
            raise FormulaError("LOG10 requires positive input")
        return math.log10(num)

    @staticmethod
    def LOG(x: Value, base: Value) -> Value:
        """Logarithm of x to the given base."""
        num, b = _number(x), _number(base)
        if num <= 0:
            raise FormulaError("LOG requires positive input")
        if b <= 0 or b == 1:
            raise FormulaError("LOG requires a positive base other than 1")
        return math.log(num) / math.log(b)

    @staticmethod
    def MOD(dividend: Value, divisor: Value) -> Value:
        """Remainder of the division; takes the sign of the dividend."""
        a, b = _number(dividend), _number(divisor)
        if b == 0:
            raise FormulaError("Division by zero")
        return math.fmod(a, b)

    @staticmethod
    def PI() -> Value:
        return math.pi

    @staticmethod
    def POW(base: Value, exponent: Value) -> Value:
        b, e = _number(base), _number(exponent)
        if b == 0 and e < 0:
            raise FormulaError("Division by zero")
        if b < 0 and not e.is_integer():
            raise FormulaError("Fractional power of a negative number")
        return math.pow(b, e)

    @staticmethod
    def POWER(base: Value, exponent: Value) -> Value:
        return ExcelFunctions.POW(base, exponent)

    @staticmethod
    def QUOTIENT(dividend: Value, divisor: Value) -> Value:
        """Integer division, truncated toward zero."""
        a, b = _number(dividend), _number(divisor)
        if b == 0:
            raise FormulaError("Division by zero")
        return float(math.trunc(a / b))

    @staticmethod
    def RAND() -> Value:
        return float(_rng.random())

    @staticmethod
    def RANDBETWEEN(low: Value, high: Value) -> Value:
        """A random integer between low and high, inclusive."""
        low_num, high_num = _number(low), _number(high)
        if not (math.isfinite(low_num) and math.isfinite(high_num)):
            raise FormulaError("RANDBETWEEN bounds are out of range")
        lo, hi = math.ceil(low_num), math.floor(high_num)
        if lo < _int64.min or hi > _int64.max:
            raise FormulaError("RANDBETWEEN bounds are out of range")
        if lo > hi:
            raise FormulaError("RANDBETWEEN requires low <= high")
        return float(_rng.integers(lo, hi, endpoint=True))

    @staticmethod
    def ROUND(x: Value, places: Value = 0.0) -> Value:
        """Round to `places` decimals, halves rounding up."""
        num, digits = _number(x), _integer(places)
        if digits < 0:
            factor = 10.0**-digits
            return math.floor(num / factor + 0.5) * factor
        factor = 10.0**digits
        return math.floor(num * factor + 0.5) / factor

    @staticmethod
    def SIGN(x: Value) -> Value:
        num = _number(x)
        if num > 0:
            return 1.0
        if num < 0:
            return -1.0
        return 0.0

    @staticmethod
    def SQRT(x: Value) -> Value:
        """Return the square root."""
        num = _number(x)
        if num < 0:
            raise FormulaError("SQRT requires a non-negative number")
        return math.sqrt(num)

    # Text. Character offsets are 0-based.

    @staticmethod
    def CHAR(index: Value) -> Value:
        """The character with the given Unicode code point."""
        code = _integer(index)
        if not 0 <= code <= 0x10FFFF:
            raise FormulaError(f"Invalid character code {code}")
        return chr(code)

    @staticmethod
    def CODE(text: Value) -> Value:
        """Unicode code point of the first character."""
        s = _text(text)
        if not s:
            raise FormulaError("CODE requires non-empty text")
        return float(ord(s[0]))

    @excel_fn(min_args=1, tables=True)
    @staticmethod
    def CONCATENATE(*args: Value) -> Value:
        return "".join([_text(v) for v in flatten_args(*args)])

    @staticmethod
    def FIND(needle: Value, text: Value, start: Value = 0.0) -> Value:
        """Offset of `needle` in `text` from `start`, or -1."""
        n, s, offset = _text(needle), _text(text), _integer(start)
        if offset < 0:
            raise FormulaError("FIND requires a non-negative start")
        return float(s.find(n, offset))

    @staticmethod
    def SEARCH(needle: Value, text: Value, start: Value = 0.0) -> Value:
        """Case-insensitive FIND."""
        n, s, offset = _text(needle), _text(text), _integer(start)
        if offset < 0:
            raise FormulaError("SEARCH requires a non-negative start")
        return float(s.lower().find(n.lower(), offset))

    @staticmethod
    def FIXED(num: Value, places: Value) -> Value:
        """Format a number with a fixed number of decimals."""
        x, digits = _number(num), _integer(places)
        if not 0 <= digits <= 100:
            raise FormulaError("FIXED requires between 0 and 100 decimals")
        return f"{x:.{digits}f}"

    @staticmethod
    def LEFT(text: Value, length: Value) -> Value:
        s, n = _text(text), _integer(length)
        if n < 0:
            raise FormulaError("LEFT requires a non-negative length")
        return s[:n]

    @staticmethod
    def RIGHT(text: Value, length: Value) -> Value:
        s, n = _text(text), _integer(length)
        if n < 0:
            raise FormulaError("RIGHT requires a non-negative length")
        return s[len(s) - n :] if n else ""

    @staticmethod
    def MID(text: Value, start: Value, length: Value) -> Value:
        """Substring of `length` characters from offset `start`."""
        s, offset, n = _text(text), _integer(start), _integer(length)
        if offset < 0 or n < 0:
            raise FormulaError("MID requires a non-negative start and length")
        return s[offset : offset + n]

    @staticmethod
    def LEN(text: Value) -> Value:
        return float(len(_text(text)))

    @staticmethod
    def LOWER(text: Value) -> Value:
        return _text(text).lower()

    @staticmethod
    def UPPER(text: Value) -> Value:
        return _text(text).upper()

    # Statistical. Tables are consumed lazily; their empty cells are skipped.

    @excel_fn(min_args=1, tables=True)
    @staticmethod
    def SUM(*args: Value) -> Value:
        """Sum of arguments, handling ranges."""
        total = 0.0
        for num in flatten_numbers(*args):
            total += num
        return total

    @excel_fn(min_args=1, tables=True)
    @staticmethod
    def PRODUCT(*args: Value) -> Value:
        return math.prod(flatten_numbers(*args), start=1.0)

    @excel_fn(min_args=1, tables=True)
    @staticmethod
    def AVERAGE(*args: Value) -> Value:
        total, count = 0.0, 0
        for num in flatten_numbers(*args):
            total += num
            count += 1
        if count == 0:
            raise FormulaError("AVERAGE of no numbers")
        return total / count

    @excel_fn(min_args=1, tables=True)
    @staticmethod
    def MIN(*args: Value) -> Value:
        result = min(flatten_numbers(*args), default=None)
        if result is None:
            raise FormulaError("MIN of no numbers")
        return result

    @excel_fn(min_args=1, tables=True)
    @staticmethod
    def MAX(*args: Value) -> Value:
        result = max(flatten_numbers(*args), default=None)
        if result is None:
            raise FormulaError("MAX of no numbers")
        return result

    @excel_fn(min_args=1, tables=True)
    @staticmethod
    def MEDIAN(*args: Value) -> Value:
        nums = list(flatten_numbers(*args))
        if not nums:
            raise FormulaError("MEDIAN of no numbers")
        return float(np.median(nums))

    @excel_fn(min_args=1, tables=True)
    @staticmethod
    def MODE(*args: Value) -> Value:
        """Most frequent number; ties go to the one seen first."""
        counts = Counter(flatten_numbers(*args))
        if not counts:
            raise FormulaError("MODE of no numbers")
        # Counter keeps first-seen order, and max() returns the first maximum
        value, count = max(counts.items(), key=lambda item: item[1])
        if count < 2:
            raise FormulaError("MODE found no repeated value")
        return value

    @excel_fn(min_args=1, tables=True)
    @staticmethod
    def COUNT(*args: Value) -> Value:
        """Number of numeric values; other values are ignored."""
        return float(sum(1 for v in flatten_args(*args) if is_number(v)))

    @excel_fn(min_args=1, tables=True)
    @staticmethod
    def COUNTUNIQUE(*args: Value) -> Value:
        """Number of distinct values, of any type."""
        # Keyed by type so that TRUE and 1 stay distinct
        return float(len({(value_type(v), v) for v in flatten_args(*args)}))

    # Lookup

    @excel_fn(tables=True)
    @staticmethod
    def INDEX(table: Value, row: Value, column: Value = 1.0) -> Value:
        """Value at a 1-based (row, column) position of a table."""
        t = _table(table)
        r, c = _integer(row) - 1, _integer(column) - 1
        if not (0 <= r < t.rows and 0 <= c < t.columns):
            raise FormulaError(f"INDEX ({r + 1}, {c + 1}) is outside the range")
        return t.require(r, c, cell_name(t.top + r, t.left + c))

    @excel_fn(tables=True)
    @staticmethod
    def ROWS(table: Value) -> Value:
        return float(_table(table).rows)

    @excel_fn(tables=True)
    @staticmethod
    def COLUMNS(table: Value) -> Value:
        return float(_table(table).columns)


# Register all unregistered static methods on ExcelFunctions by their method names
for _name, _member in ExcelFunctions.__dict__.items():
    if _name.startswith("_"):
        continue
    if isinstance(_member, staticmethod):
        _func = _member.__func__
        if (
            not getattr(_func, "_excel_fn_registered", False)
            and _name not in EXCEL_FUNCTIONS
        ):
            _register(_func, _name)
