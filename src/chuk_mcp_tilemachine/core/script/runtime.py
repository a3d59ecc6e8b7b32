"""
Value model and numeric semantics for compiled pixel scripts.

Numbers are Python floats and follow IEEE-754 the way JavaScript does:
division by zero gives +/-Infinity or NaN, domain errors give NaN. `undefined`
is None, `null` is the NULL sentinel, arrays are lists (FrozenArray tuples
once hoisted; every evaluation works on thawed copies).
"""

import math
from types import MappingProxyType
from typing import Any, Callable, Mapping

from ...constants import DEFAULT_ALPHA, MAX_CALL_DEPTH, MAX_CALLS_PER_PIXEL, ErrorMessages
from ..errors import EvaluationFailure

NAN = math.nan
INF = math.inf


class _Null:
    __slots__ = ()

    def __repr__(self) -> str:
        return "null"


class _Uninitialized:
    __slots__ = ()


NULL = _Null()
UNINITIALIZED = _Uninitialized()


def describe(value: Any) -> str:
    if value is None:
        return "undefined"
    if value is NULL:
        return "null"
    if isinstance(value, bool):
        return "a boolean"
    if isinstance(value, (int, float)):
        return "a number"
    if isinstance(value, (list, tuple)):
        return "an array"
    if isinstance(value, (BuiltinFunction, ScriptFunction)):
        return "a function"
    if isinstance(value, MathNamespace):
        return "Math"
    return type(value).__name__


def to_number(value: Any) -> float:
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if value is None:
        return NAN
    if value is NULL:
        return 0.0
    raise EvaluationFailure(ErrorMessages.NOT_A_NUMBER.format(describe(value)))


def truthy(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return not (value == 0 or value != value)
    if value is None or value is NULL:
        return False
    return True


class FrozenArray(tuple):
    """Array evaluated at compile time. Unlike (), an empty one has its own identity."""

    __slots__ = ()


def freeze(value: Any) -> Any:
    """Recursively turn arrays into FrozenArrays. Already frozen arrays keep their identity."""
    if isinstance(value, list):
        return FrozenArray(freeze(v) for v in value)
    return value


def thaw(value: Any, memo: dict[int, list]) -> Any:
    """Mutable copy of a frozen array; a tuple reached twice maps to one list."""
    if not isinstance(value, tuple):
        return value
    copy = memo.get(id(value))
    if copy is None:
        copy = memo[id(value)] = []
        copy.extend(thaw(v, memo) for v in value)
    return copy


# ---------------------------------------------------------------------------
# Operators
# ---------------------------------------------------------------------------


def _is_odd_integer(x: float) -> bool:
    return math.isfinite(x) and x.is_integer() and int(x) % 2 == 1


def js_div(a: float, b: float) -> float:
    if b == 0:
        if a == 0 or a != a:
            return NAN
        return math.copysign(INF, a) * math.copysign(1.0, b)
    return a / b


def js_mod(a: float, b: float) -> float:
    if b == 0 or a != a or b != b or math.isinf(a):
        return NAN
    if math.isinf(b):
        return a
    return math.fmod(a, b)


def js_pow(a: float, b: float) -> float:
    if b != b:
        return NAN
    if b == 0:
        return 1.0
    if a != a:
        return NAN
    if abs(a) == 1 and math.isinf(b):
        return NAN
    if a == 0 and b < 0:
        if math.copysign(1.0, a) < 0 and _is_odd_integer(b):
            return -INF
        return INF
    try:
        return math.pow(a, b)
    except OverflowError:
        return -INF if a < 0 and _is_odd_integer(b) else INF
    except ValueError:
        return NAN


def strict_equals(a: Any, b: Any) -> bool:
    a_num = isinstance(a, (int, float)) and not isinstance(a, bool)
    b_num = isinstance(b, (int, float)) and not isinstance(b, bool)
    if a_num and b_num:
        return a == b
    if a_num or b_num:
        return False
    return a is b


def loose_equals(a: Any, b: Any) -> bool:
    nullish = (None, NULL)
    if a in nullish or b in nullish:
        return a in nullish and b in nullish
    if isinstance(a, (list, tuple)) or isinstance(b, (list, tuple)):
        return a is b
    if isinstance(a, (BuiltinFunction, ScriptFunction, MathNamespace)) or isinstance(
        b, (BuiltinFunction, ScriptFunction, MathNamespace)
    ):
        return a is b
    return to_number(a) == to_number(b)


def binary_op(op: str) -> Callable[[Any, Any], Any]:
    """Return the implementation of an arithmetic or comparison operator."""
    if op == "+":
        return lambda a, b: to_number(a) + to_number(b)
    if op == "-":
        return lambda a, b: to_number(a) - to_number(b)
    if op == "*":
        return lambda a, b: to_number(a) * to_number(b)
    if op == "/":
        return lambda a, b: js_div(to_number(a), to_number(b))
    if op == "%":
        return lambda a, b: js_mod(to_number(a), to_number(b))
    if op == "**":
        return lambda a, b: js_pow(to_number(a), to_number(b))
    if op == "<":
        return lambda a, b: to_number(a) < to_number(b)
    if op == "<=":
        return lambda a, b: to_number(a) <= to_number(b)
    if op == ">":
        return lambda a, b: to_number(a) > to_number(b)
    if op == ">=":
        return lambda a, b: to_number(a) >= to_number(b)
    if op == "===":
        return strict_equals
    if op == "!==":
        return lambda a, b: not strict_equals(a, b)
    if op == "==":
        return loose_equals
    if op == "!=":
        return lambda a, b: not loose_equals(a, b)
    raise ValueError(f"Unknown operator {op}")


def get_index(target: Any, index: Any) -> Any:
    if not isinstance(target, (list, tuple)):
        raise EvaluationFailure(ErrorMessages.NOT_INDEXABLE.format(describe(target)))
    i = to_number(index)
    if i.is_integer() and 0 <= i < len(target):
        return target[int(i)]
    return None


def set_index(target: Any, index: Any, value: Any) -> None:
    if isinstance(target, tuple):
        raise EvaluationFailure(ErrorMessages.FROZEN_ARRAY)
    if not isinstance(target, list):
        raise EvaluationFailure(ErrorMessages.NOT_INDEXABLE.format(describe(target)))
    i = to_number(index)
    if not i.is_integer() or not 0 <= i <= len(target):
        raise EvaluationFailure(ErrorMessages.INDEX_ASSIGN_RANGE.format(i, len(target)))
    if i == len(target):
        target.append(value)
    else:
        target[int(i)] = value


def get_length(target: Any) -> Any:
    if isinstance(target, (list, tuple)):
        return float(len(target))
    return None


# ---------------------------------------------------------------------------
# Functions
# ---------------------------------------------------------------------------


class BuiltinFunction:
    __slots__ = ("name", "fn")

    def __init__(self, name: str, fn: Callable[..., float]) -> None:
        self.name = name
        self.fn = fn

    def invoke(self, args: list) -> Any:
        return self.fn(*args)

    def __repr__(self) -> str:
        return f"<builtin {self.name}>"


class ScriptFunction:
    """A function declared in the script, closed over the frame it was created in."""

    __slots__ = ("name", "params", "body", "closure")

    def __init__(self, name: str, params: list[str], body: Callable, closure: "Frame") -> None:
        self.name = name
        self.params = params
        self.body = body
        self.closure = closure

    def invoke(self, args: list) -> Any:
        context = self.closure.context
        context.calls += 1
        if context.calls > MAX_CALLS_PER_PIXEL:
            raise EvaluationFailure(ErrorMessages.CALL_BUDGET.format(MAX_CALLS_PER_PIXEL))
        context.depth += 1
        if context.depth > MAX_CALL_DEPTH:
            context.depth -= 1
            raise EvaluationFailure(ErrorMessages.RECURSION_LIMIT)
        try:
            frame = Frame(context, self.closure)
            vars = frame.vars
            for i, param in enumerate(self.params):
                vars[param] = args[i] if i < len(args) else None
            return self.body(frame)
        finally:
            context.depth -= 1

    def __repr__(self) -> str:
        return f"<function {self.name}>"


def call_value(callee: Any, args: list, label: str) -> Any:
    if isinstance(callee, (ScriptFunction, BuiltinFunction)):
        return callee.invoke(args)
    raise EvaluationFailure(ErrorMessages.NOT_A_FUNCTION.format(label))


# ---------------------------------------------------------------------------
# Builtins
# ---------------------------------------------------------------------------


def _unary_math(fn: Callable[[float], float], overflow: float = INF) -> Callable[..., float]:
    def wrapper(x: Any = None, *_: Any) -> float:
        value = to_number(x)
        try:
            return float(fn(value))
        except ValueError:
            return NAN
        except OverflowError:
            return overflow

    return wrapper


def _rounding(fn: Callable[[float], int]) -> Callable[[float], float]:
    def wrapper(x: float) -> float:
        if not math.isfinite(x):
            return x
        return float(fn(x))

    return wrapper


def _js_round(x: float) -> float:
    return float(math.floor(x + 0.5))


def _sign(x: float) -> float:
    if x != x or x == 0:
        return x
    return 1.0 if x > 0 else -1.0


def _logarithm(fn: Callable[[float], float]) -> Callable[[float], float]:
    def wrapper(x: float) -> float:
        if x == 0:
            return -INF
        return fn(x)

    return wrapper


def _math_min(*args: Any) -> float:
    result = INF
    for arg in args:
        value = to_number(arg)
        if value != value:
            return NAN
        result = min(result, value)
    return result


def _math_max(*args: Any) -> float:
    result = -INF
    for arg in args:
        value = to_number(arg)
        if value != value:
            return NAN
        result = max(result, value)
    return result


def _math_pow(a: Any = None, b: Any = None, *_: Any) -> float:
    return js_pow(to_number(a), to_number(b))


def _math_atan2(y: Any = None, x: Any = None, *_: Any) -> float:
    return math.atan2(to_number(y), to_number(x))


def _math_hypot(*args: Any) -> float:
    return math.hypot(*(to_number(a) for a in args))


def _is_nan(x: Any = None, *_: Any) -> bool:
    return math.isnan(to_number(x))


def _is_finite(x: Any = None, *_: Any) -> bool:
    return math.isfinite(to_number(x))


MATH_MEMBERS: Mapping[str, Any] = MappingProxyType(
    {
        "abs": BuiltinFunction("abs", _unary_math(math.fabs)),
        "min": BuiltinFunction("min", _math_min),
        "max": BuiltinFunction("max", _math_max),
        "floor": BuiltinFunction("floor", _unary_math(_rounding(math.floor))),
        "ceil": BuiltinFunction("ceil", _unary_math(_rounding(math.ceil))),
        "round": BuiltinFunction("round", _unary_math(_rounding(_js_round))),
        "trunc": BuiltinFunction("trunc", _unary_math(_rounding(math.trunc))),
        "sign": BuiltinFunction("sign", _unary_math(_sign)),
        "sqrt": BuiltinFunction("sqrt", _unary_math(math.sqrt)),
        "cbrt": BuiltinFunction("cbrt", _unary_math(math.cbrt)),
        "pow": BuiltinFunction("pow", _math_pow),
        "exp": BuiltinFunction("exp", _unary_math(math.exp)),
        "log": BuiltinFunction("log", _unary_math(_logarithm(math.log))),
        "log2": BuiltinFunction("log2", _unary_math(_logarithm(math.log2))),
        "log10": BuiltinFunction("log10", _unary_math(_logarithm(math.log10))),
        "sin": BuiltinFunction("sin", _unary_math(math.sin)),
        "cos": BuiltinFunction("cos", _unary_math(math.cos)),
        "tan": BuiltinFunction("tan", _unary_math(math.tan)),
        "asin": BuiltinFunction("asin", _unary_math(math.asin)),
        "acos": BuiltinFunction("acos", _unary_math(math.acos)),
        "atan": BuiltinFunction("atan", _unary_math(math.atan)),
        "atan2": BuiltinFunction("atan2", _math_atan2),
        "hypot": BuiltinFunction("hypot", _math_hypot),
        "PI": math.pi,
        "E": math.e,
        "LN2": math.log(2),
        "LN10": math.log(10),
        "SQRT2": math.sqrt(2),
    }
)


class MathNamespace:
    __slots__ = ()

    def __repr__(self) -> str:
        return "Math"


MATH = MathNamespace()

BUILTINS: Mapping[str, Any] = MappingProxyType(
    {
        "Math": MATH,
        "isNaN": BuiltinFunction("isNaN", _is_nan),
        "isFinite": BuiltinFunction("isFinite", _is_finite),
        "NaN": NAN,
        "Infinity": INF,
        "undefined": None,
    }
)


# ---------------------------------------------------------------------------
# Frames
# ---------------------------------------------------------------------------


class Context:
    """Per-evaluation state: the pixel environment, constant scope and call depth."""

    __slots__ = ("env", "constants", "depth", "calls")

    def __init__(self, env: Mapping[str, Any], constants: Mapping[str, Any]) -> None:
        self.env = env
        self.constants = constants
        self.depth = 0
        self.calls = 0


class Frame:
    __slots__ = ("context", "parent", "vars")

    def __init__(self, context: Context, parent: "Frame | None" = None) -> None:
        self.context = context
        self.parent = parent
        self.vars: dict[str, Any] = {}

    def lookup(self, name: str) -> Any:
        frame: Frame | None = self
        while frame is not None:
            vars = frame.vars
            if name in vars:
                value = vars[name]
                if value is UNINITIALIZED:
                    break
                return value
            frame = frame.parent
        raise EvaluationFailure(ErrorMessages.NOT_DEFINED.format(name))

    def assign(self, name: str, value: Any) -> None:
        frame: Frame | None = self
        while frame is not None:
            vars = frame.vars
            if name in vars:
                if vars[name] is UNINITIALIZED:
                    break
                vars[name] = value
                return
            frame = frame.parent
        raise EvaluationFailure(ErrorMessages.NOT_DEFINED.format(name))


def to_channels(value: Any) -> tuple[float, float, float, float]:
    """Validate a script's return value and convert it to 4 floats."""
    if not isinstance(value, (list, tuple)):
        raise EvaluationFailure(ErrorMessages.BAD_RETURN_TYPE.format(describe(value)))
    if len(value) not in (3, 4):
        raise EvaluationFailure(ErrorMessages.BAD_RETURN_LENGTH.format(len(value)))
    channels = [to_number(v) for v in value]
    if len(channels) == 3:
        channels.append(DEFAULT_ALPHA)
    return tuple(channels)
