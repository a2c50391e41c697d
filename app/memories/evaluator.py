# memories/evaluator.py
"""
Вычисление условий веток.

Синтаксис - тот, что набирают в редакторе IF-памяти:
  [v1] >= 50 && [v2] < 10
  ([t] > 20 or [alarm]) and not [service]
  if([mode] == 1, [t1], [t2]) > Max([lo], 5)

Текст переводится в выражение Python, разбирается через ast и
исполняется нашим собственным обходчиком по белому списку узлов.
eval/exec не используются.
"""
from __future__ import annotations

import ast
import math
import operator
import re
import threading
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from .errors import EvalError
from .types import DIGITAL_EPSILON, Scalar, to_bool, to_number

MAX_CONDITION_LENGTH = 2000
# глубина дерева выражения; глубже - обходчик упрётся в стек
MAX_NESTING_DEPTH = 200

# имя функции (в нижнем регистре) → (мин. аргументов, макс. аргументов или None)
FUNCTIONS: Dict[str, Tuple[int, Optional[int]]] = {
    "abs": (1, 1),
    "min": (0, None),
    "max": (0, None),
    "avg": (0, None),
    "round": (1, 2),
    "sqrt": (1, 1),
    "pow": (2, 2),
    "floor": (1, 1),
    "ceiling": (1, 1),
    "clamp": (3, 3),
    "scale": (5, 5),
    "deadband": (3, 3),
    "if": (3, 3),
    "iff": (3, 3),
}

# ленивые: вычисляется только выбранная ветка
_LAZY_FUNCTIONS = ("if", "iff")

_VAR_PREFIX = "__v"
_FUNC_PREFIX = "__f_"

_NUMBER_RE = re.compile(r"(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?")
_IDENT_RE = re.compile(r"[^\W\d]\w*")

# многосимвольные операторы проверяем раньше односимвольных
_OPERATORS = [
    ("&&", "and"),
    ("||", "or"),
    ("==", "=="),
    ("!=", "!="),
    ("<>", "!="),
    ("<=", "<="),
    (">=", ">="),
    ("<", "<"),
    (">", ">"),
    ("=", "=="),
    ("!", "not"),
    ("+", "+"),
    ("-", "-"),
    ("*", "*"),
    ("/", "/"),
    ("%", "%"),
    ("(", "("),
    (")", ")"),
    (",", ","),
]

_COMPARE: Dict[type, Callable[[Any, Any], bool]] = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
}

_ARITH: Dict[type, Callable[[float, float], float]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.Mod: math.fmod,
}


# === 1. ИНТЕРФЕЙС ============================================================

class ConditionEvaluator(ABC):
    """
    Возможность «вычислить условие». Движок знает только этот интерфейс,
    грамматику можно подменить.
    """

    @abstractmethod
    def evaluate(self, text: str, snapshot: Mapping[str, Scalar]) -> bool:
        """Вычислить условие на снимке. Любая проблема → EvalError."""
        raise NotImplementedError

    @abstractmethod
    def check(self, text: str, aliases: Iterable[str]) -> None:
        """Проверить синтаксис и псевдонимы без вычисления. Проблема → EvalError."""
        raise NotImplementedError


# === 2. ПЕРЕВОД ТЕКСТА В PYTHON ==============================================

class _Compiled:
    __slots__ = ("tree", "aliases")

    def __init__(self, tree: ast.Expression, aliases: List[str]) -> None:
        self.tree = tree
        self.aliases = aliases  # индекс → псевдоним (для __v<idx>)


def _translate(text: str) -> Tuple[str, List[str]]:
    """
    Текст условия → исходник Python + список псевдонимов.
    [alias] и «голые» идентификаторы заменяются на __v<idx>,
    функции - на __f_<имя>.
    """
    out: List[str] = []
    aliases: List[str] = []
    index: Dict[str, int] = {}

    def _alias_token(name: str) -> str:
        if name not in index:
            index[name] = len(aliases)
            aliases.append(name)
        return f"{_VAR_PREFIX}{index[name]}"

    i = 0
    n = len(text)
    while i < n:
        ch = text[i]

        if ch.isspace():
            i += 1
            continue

        if ch == "[":
            end = text.find("]", i + 1)
            if end < 0:
                raise EvalError(f"unterminated '[' at position {i}")
            name = text[i + 1:end]
            if not name.strip():
                raise EvalError(f"empty alias at position {i}")
            out.append(_alias_token(name))
            i = end + 1
            continue

        if ch in "'\"":
            raise EvalError(f"string literals are not supported (position {i})")

        m = _NUMBER_RE.match(text, i)
        if m and (ch.isdigit() or ch == "."):
            out.append(m.group(0))
            i = m.end()
            continue

        m = _IDENT_RE.match(text, i)
        if m:
            word = m.group(0)
            low = word.lower()
            if low in ("true", "false"):
                out.append("True" if low == "true" else "False")
            elif low in ("and", "or", "not"):
                out.append(low)
            elif low in FUNCTIONS:
                out.append(f"{_FUNC_PREFIX}{low}")
            else:
                out.append(_alias_token(word))
            i = m.end()
            continue

        for sym, py in _OPERATORS:
            if text.startswith(sym, i):
                out.append(py)
                i += len(sym)
                break
        else:
            raise EvalError(f"unexpected character {ch!r} at position {i}")

    return " ".join(out), aliases


def _check_nodes(tree: ast.AST) -> None:
    """Белый список узлов: всё остальное - EvalError ещё до вычисления."""
    for node in ast.walk(tree):
        if isinstance(node, (ast.Expression, ast.BoolOp, ast.And, ast.Or, ast.UnaryOp,
                             ast.Not, ast.USub, ast.UAdd, ast.BinOp, ast.Compare, ast.Load)):
            continue
        if isinstance(node, tuple(_ARITH)) or isinstance(node, tuple(_COMPARE)):
            continue
        if isinstance(node, ast.Constant):
            if isinstance(node.value, (bool, int, float)):
                continue
            raise EvalError(f"unsupported literal {node.value!r}")
        if isinstance(node, ast.Name):
            if node.id.startswith(_VAR_PREFIX) or node.id.startswith(_FUNC_PREFIX):
                continue
            raise EvalError(f"unknown name {node.id!r}")
        if isinstance(node, ast.Call):
            if not isinstance(node.func, ast.Name) or not node.func.id.startswith(_FUNC_PREFIX):
                raise EvalError("only built-in functions can be called")
            fname = node.func.id[len(_FUNC_PREFIX):]
            lo, hi = FUNCTIONS[fname]
            if node.keywords or len(node.args) < lo or (hi is not None and len(node.args) > hi):
                if hi is None:
                    expected = f"at least {lo}"
                else:
                    expected = str(lo) if lo == hi else f"{lo}..{hi}"
                raise EvalError(f"{fname}() takes {expected} argument(s), got {len(node.args)}")
            continue
        raise EvalError(f"unsupported construct: {type(node).__name__}")

    # функция без вызова (например, "abs + 1")
    called = {id(node.func) for node in ast.walk(tree) if isinstance(node, ast.Call)}
    for node in ast.walk(tree):
        if isinstance(node, ast.Name) and node.id.startswith(_FUNC_PREFIX) and id(node) not in called:
            raise EvalError(f"function {node.id[len(_FUNC_PREFIX):]} must be called")


def _depth(tree: ast.AST) -> int:
    """Глубина дерева без рекурсии."""
    deepest = 0
    stack = [(tree, 1)]
    while stack:
        node, level = stack.pop()
        deepest = max(deepest, level)
        for child in ast.iter_child_nodes(node):
            stack.append((child, level + 1))
    return deepest


def compile_condition(text: str) -> _Compiled:
    if text is None or not str(text).strip():
        raise EvalError("condition is empty")
    if len(text) > MAX_CONDITION_LENGTH:
        raise EvalError(f"condition is longer than {MAX_CONDITION_LENGTH} characters")

    source, aliases = _translate(text)
    try:
        tree = ast.parse(source, mode="eval")
    except SyntaxError as exc:
        raise EvalError(f"syntax error: {exc.msg}") from exc
    except (RecursionError, MemoryError) as exc:
        raise EvalError("condition is nested too deeply") from exc

    if _depth(tree) > MAX_NESTING_DEPTH:
        raise EvalError(f"condition is nested deeper than {MAX_NESTING_DEPTH} levels")
    _check_nodes(tree)
    return _Compiled(tree, aliases)


# === 3. ОБХОДЧИК =============================================================

class _Interpreter:
    def __init__(self, compiled: _Compiled, snapshot: Mapping[str, Scalar]) -> None:
        self._aliases = compiled.aliases
        self._snapshot = snapshot

    def run(self, node: ast.AST) -> Scalar:
        if isinstance(node, ast.Expression):
            return self.run(node.body)

        if isinstance(node, ast.Constant):
            v = node.value
            return v if isinstance(v, bool) else float(v)

        if isinstance(node, ast.Name):
            alias = self._aliases[int(node.id[len(_VAR_PREFIX):])]
            if alias not in self._snapshot:
                raise EvalError(f"unknown alias [{alias}]")
            return self._snapshot[alias]

        if isinstance(node, ast.BoolOp):
            if isinstance(node.op, ast.And):
                for sub in node.values:
                    if not to_bool(self.run(sub)):
                        return False
                return True
            for sub in node.values:
                if to_bool(self.run(sub)):
                    return True
            return False

        if isinstance(node, ast.UnaryOp):
            val = self.run(node.operand)
            if isinstance(node.op, ast.Not):
                return not to_bool(val)
            num = to_number(val)
            return -num if isinstance(node.op, ast.USub) else num

        if isinstance(node, ast.BinOp):
            left = to_number(self.run(node.left))
            right = to_number(self.run(node.right))
            if isinstance(node.op, (ast.Div, ast.Mod)) and right == 0.0:
                raise EvalError("division by zero")
            return _ARITH[type(node.op)](left, right)

        if isinstance(node, ast.Compare):
            # a < b < c читаем слева направо: (a < b) < c
            left = self.run(node.left)
            for op, comp in zip(node.ops, node.comparators):
                right = self.run(comp)
                left = self._compare(op, left, right)
            return left

        if isinstance(node, ast.Call):
            return self._call(node.func.id[len(_FUNC_PREFIX):], node.args)

        raise EvalError(f"unsupported construct: {type(node).__name__}")

    @staticmethod
    def _compare(op: ast.cmpop, left: Scalar, right: Scalar) -> bool:
        fn = _COMPARE[type(op)]
        if isinstance(left, bool) and isinstance(right, bool) and isinstance(op, (ast.Eq, ast.NotEq)):
            return fn(left, right)
        return fn(to_number(left), to_number(right))

    def _call(self, fname: str, args: List[ast.AST]) -> Scalar:
        if fname in _LAZY_FUNCTIONS:
            cond = to_bool(self.run(args[0]))
            return self.run(args[1] if cond else args[2])

        vals = [to_number(self.run(a)) for a in args]
        if fname == "abs":
            return abs(vals[0])
        if fname in ("min", "max", "avg"):
            # без аргументов - 0
            if not vals:
                return 0.0
            if fname == "min":
                return min(vals)
            if fname == "max":
                return max(vals)
            return math.fsum(vals) / len(vals)
        if fname == "round":
            digits = int(vals[1]) if len(vals) > 1 else 0
            return float(round(vals[0], digits))
        if fname == "sqrt":
            if vals[0] < 0:
                raise EvalError("sqrt of a negative number")
            return math.sqrt(vals[0])
        if fname == "pow":
            return math.pow(vals[0], vals[1])
        if fname == "floor":
            return float(math.floor(vals[0]))
        if fname == "ceiling":
            return float(math.ceil(vals[0]))
        if fname == "clamp":
            v, lo, hi = vals
            if lo > hi:
                raise EvalError(f"clamp: min {lo} is greater than max {hi}")
            return min(max(v, lo), hi)
        if fname == "scale":
            v, in_lo, in_hi, out_lo, out_hi = vals
            if abs(in_hi - in_lo) < DIGITAL_EPSILON:
                return out_lo
            return out_lo + (v - in_lo) / (in_hi - in_lo) * (out_hi - out_lo)
        if fname == "deadband":
            # внутри полосы (center ± band/2) держим center
            v, center, band = vals
            return center if abs(v - center) <= abs(band) / 2.0 else v
        raise EvalError(f"unknown function {fname}")


# === 4. РЕАЛИЗАЦИЯ ПО УМОЛЧАНИЮ ==============================================

class DefaultConditionEvaluator(ConditionEvaluator):
    """
    Разобранные выражения кешируются (текст → дерево), кеш ограничен.
    """

    def __init__(self, cache_size: int = 1024) -> None:
        self._cache: "OrderedDict[str, _Compiled]" = OrderedDict()
        self._cache_size = cache_size
        self._lock = threading.Lock()

    def _compiled(self, text: str) -> _Compiled:
        with self._lock:
            hit = self._cache.get(text)
            if hit is not None:
                self._cache.move_to_end(text)
                return hit

        compiled = compile_condition(text)

        with self._lock:
            self._cache[text] = compiled
            if len(self._cache) > self._cache_size:
                self._cache.popitem(last=False)
        return compiled

    def check(self, text: str, aliases: Iterable[str]) -> None:
        compiled = self._compiled(text)
        known: Set[str] = set(aliases)
        for a in compiled.aliases:
            if a not in known:
                raise EvalError(f"unknown alias [{a}]")

    def evaluate(self, text: str, snapshot: Mapping[str, Scalar]) -> bool:
        compiled = self._compiled(text)
        try:
            result = _Interpreter(compiled, snapshot).run(compiled.tree)
        except (ArithmeticError, ValueError) as exc:
            raise EvalError(f"evaluation failed: {exc}") from exc
        except RecursionError as exc:
            raise EvalError("evaluation failed: condition is nested too deeply") from exc

        if isinstance(result, bool):
            return result
        if isinstance(result, float):
            if math.isnan(result):
                raise EvalError("condition evaluated to NaN")
            return abs(result) > DIGITAL_EPSILON
        raise EvalError(f"condition must be boolean or numeric, got {type(result).__name__}")

    def referenced_aliases(self, text: str) -> List[str]:
        """Какие псевдонимы упоминаются в условии (для подсказок в редакторе)."""
        return list(self._compiled(text).aliases)
