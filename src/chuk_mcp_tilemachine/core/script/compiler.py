"""
Closure compiler for pixel scripts.

The checked AST is translated once into a tree of Python closures, so the
per-pixel cost is a chain of direct function calls rather than an AST walk.
The resulting CompiledPixelFunction holds no mutable state and is shared
read-only by all render threads of a request.
"""

import logging
from types import MappingProxyType
from typing import Any, Callable, Iterable, Mapping

from ...constants import MATH_FUNCTIONS, MAX_NESTING_DEPTH, MAX_SCRIPT_LENGTH, ErrorMessages
from ..errors import CapabilityViolation, EvaluationFailure, ScriptSyntaxError
from . import nodes as n
from .checker import Analysis, BindingKind, check
from .parser import parse
from .runtime import (
    BUILTINS,
    MATH_MEMBERS,
    NULL,
    UNINITIALIZED,
    BuiltinFunction,
    Context,
    Frame,
    ScriptFunction,
    binary_op,
    call_value,
    describe,
    freeze,
    get_index,
    get_length,
    set_index,
    thaw,
    to_channels,
    to_number,
    truthy,
)

logger = logging.getLogger(__name__)

Evaluator = Callable[[Frame], Any]
# Statements return None to continue, or a 1-tuple carrying a returned value
Executor = Callable[[Frame], "tuple | None"]


class CompiledPixelFunction:
    """
    Callable pixel function produced by compile_script.

    Call with an environment mapping each input name to that pixel's band
    values. Returns (r, g, b, a) as floats; clamping is left to the engine.
    Runtime faults raise EvaluationFailure.
    """

    def __init__(
        self,
        body: Executor,
        constants: dict[str, Any],
        declared_inputs: tuple[str, ...],
        referenced_inputs: frozenset[str],
    ) -> None:
        self._body = body
        self._constants = MappingProxyType(constants)
        self._arrays = tuple(name for name, value in constants.items() if isinstance(value, tuple))
        self.declared_inputs = declared_inputs
        self.referenced_inputs = referenced_inputs

    @property
    def constants(self) -> Mapping[str, Any]:
        """Hoisted top-level constants, evaluated once at compile time.

        Arrays are stored frozen; each call works on its own mutable copy.
        """
        return self._constants

    def __call__(
        self, env: Mapping[str, Any], scope: Mapping[str, Any] | None = None
    ) -> tuple[float, float, float, float]:
        if scope is None:
            scope = self._scope()
        context = Context(env, scope)
        try:
            result = self._body(Frame(context))
        except RecursionError as exc:
            raise EvaluationFailure(ErrorMessages.RECURSION_LIMIT) from exc
        return to_channels(result[0] if result is not None else None)

    def _scope(self) -> Mapping[str, Any]:
        if not self._arrays:
            return self._constants
        scope = dict(self._constants)
        memo: dict[int, list] = {}
        for name in self._arrays:
            scope[name] = thaw(scope[name], memo)
        return scope


def _is_math_member(node: n.Expr) -> bool:
    return isinstance(node, n.Member) and isinstance(node.target, n.Name) and node.target.id == "Math"


def _label(node: n.Expr) -> str:
    if isinstance(node, n.Name):
        return node.id
    if isinstance(node, n.Member):
        return f"{_label(node.target)}.{node.attr}"
    if isinstance(node, n.Index):
        return f"{_label(node.target)}[...]"
    return "expression"


class ScriptCompiler:
    def __init__(self, analysis: Analysis) -> None:
        self.analysis = analysis
        self.constants: dict[str, Any] = {}
        self.hoisted: set[int] = set()

    def compile(self) -> Executor:
        self._hoist_constants()
        return self._block(self.analysis.program.body, new_frame=False)

    # ------------------------------------------------------------------
    # Constant hoisting
    # ------------------------------------------------------------------

    def _is_constant(self, node: n.Expr) -> bool:
        if isinstance(node, (n.Number, n.Boolean, n.Null)):
            return True
        if isinstance(node, n.ArrayLiteral):
            return all(self._is_constant(e) for e in node.elements)
        if isinstance(node, n.Unary):
            return self._is_constant(node.operand)
        if isinstance(node, (n.Binary, n.Logical, n.Index)):
            left, right = (node.target, node.index) if isinstance(node, n.Index) else (node.left, node.right)
            return self._is_constant(left) and self._is_constant(right)
        if isinstance(node, n.Conditional):
            return all(self._is_constant(e) for e in (node.test, node.consequent, node.alternate))
        if isinstance(node, n.Name):
            binding = self.analysis.binding_of(node)
            return binding.kind == BindingKind.BUILTIN or binding.hoisted
        if isinstance(node, n.Member):
            return _is_math_member(node) or self._is_constant(node.target)
        if isinstance(node, n.Call):
            return (
                _is_math_member(node.callee)
                and node.callee.attr in MATH_FUNCTIONS
                and all(self._is_constant(a) for a in node.args)
            )
        return False

    def _hoist_constants(self) -> None:
        for decl, binding in self.analysis.hoist_candidates:
            if not self._is_constant(decl.init):
                continue
            evaluate = self._expr(decl.init)
            try:
                value = evaluate(Frame(Context({}, self.constants)))
            except EvaluationFailure:
                # Left to fail per pixel, where the engine counts it
                continue
            self.constants[binding.name] = freeze(value)
            binding.hoisted = True
            self.hoisted.add(id(decl))

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    def _block(self, body: list[n.Stmt], new_frame: bool) -> Executor:
        lexical: list[str] = []
        functions: list[tuple[str, Callable[[Frame], ScriptFunction]]] = []
        for stmt in body:
            if isinstance(stmt, n.VarDecl):
                for decl in stmt.declarators:
                    if id(decl) not in self.hoisted:
                        lexical.extend(n.declared_names(decl.target))
            elif isinstance(stmt, n.FunctionDecl):
                functions.append((stmt.name, self._function(stmt.name, stmt.params, stmt.body)))

        statements = [s for s in (self._stmt(stmt) for stmt in body) if s is not None]
        needs_frame = new_frame and bool(lexical or functions)

        def run_block(frame: Frame):
            if needs_frame:
                frame = Frame(frame.context, frame)
            vars = frame.vars
            for name in lexical:
                vars[name] = UNINITIALIZED
            for name, make in functions:
                vars[name] = make(frame)
            for statement in statements:
                result = statement(frame)
                if result is not None:
                    return result
            return None

        return run_block

    def _nested(self, stmt: n.Stmt) -> Executor:
        body = stmt.body if isinstance(stmt, n.Block) else [stmt]
        return self._block(body, new_frame=True)

    def _stmt(self, stmt: n.Stmt) -> Executor | None:
        if isinstance(stmt, n.VarDecl):
            return self._var_decl(stmt)
        if isinstance(stmt, n.Return):
            if stmt.value is None:
                return lambda frame: (None,)
            value = self._expr(stmt.value)
            return lambda frame: (value(frame),)
        if isinstance(stmt, n.If):
            return self._if(stmt)
        if isinstance(stmt, n.Block):
            return self._block(stmt.body, new_frame=True)
        if isinstance(stmt, n.ExprStmt):
            evaluate = self._expr(stmt.expr)

            def run_expr(frame: Frame):
                evaluate(frame)

            return run_expr
        # FunctionDecl is bound at block entry; Empty does nothing
        return None

    def _var_decl(self, stmt: n.VarDecl) -> Executor | None:
        steps = []
        for decl in stmt.declarators:
            if id(decl) in self.hoisted:
                continue
            if stmt.kind == BindingKind.VAR and decl.init is None and isinstance(decl.target, n.Name):
                steps.append(self._declare_var(decl.target.id))
                continue
            init = self._expr(decl.init) if decl.init is not None else (lambda frame: None)
            if isinstance(decl.target, n.Name):
                steps.append(self._bind_name(decl.target.id, init))
            else:
                steps.append(self._bind_pattern(decl.target.names, init))
        if not steps:
            return None

        def run_decl(frame: Frame):
            for step in steps:
                step(frame)

        return run_decl

    @staticmethod
    def _bind_name(name: str, init: Evaluator) -> Callable[[Frame], None]:
        def bind(frame: Frame) -> None:
            frame.vars[name] = init(frame)

        return bind

    @staticmethod
    def _declare_var(name: str) -> Callable[[Frame], None]:
        # A bare `var x` keeps the value of an earlier declaration
        def declare(frame: Frame) -> None:
            if frame.vars.get(name, UNINITIALIZED) is UNINITIALIZED:
                frame.vars[name] = None

        return declare

    @staticmethod
    def _bind_pattern(names: list[str | None], init: Evaluator) -> Callable[[Frame], None]:
        def bind(frame: Frame) -> None:
            value = init(frame)
            if not isinstance(value, (list, tuple)):
                raise EvaluationFailure(ErrorMessages.DESTRUCTURE_NON_ARRAY.format(describe(value)))
            vars = frame.vars
            for i, name in enumerate(names):
                if name is not None:
                    vars[name] = value[i] if i < len(value) else None

        return bind

    def _if(self, stmt: n.If) -> Executor:
        test = self._expr(stmt.test)
        consequent = self._nested(stmt.consequent)
        alternate = self._nested(stmt.alternate) if stmt.alternate is not None else None

        def run_if(frame: Frame):
            if truthy(test(frame)):
                return consequent(frame)
            if alternate is not None:
                return alternate(frame)
            return None

        return run_if

    def _function(
        self, name: str, params: list[str], body: n.Block | n.Expr
    ) -> Callable[[Frame], ScriptFunction]:
        if isinstance(body, n.Block):
            run = self._block(body.body, new_frame=False)

            def evaluate(frame: Frame) -> Any:
                result = run(frame)
                return result[0] if result is not None else None

        else:
            evaluate = self._expr(body)

        def make(frame: Frame) -> ScriptFunction:
            return ScriptFunction(name, params, evaluate, frame)

        return make

    # ------------------------------------------------------------------
    # Expressions
    # ------------------------------------------------------------------

    def _expr(self, node: n.Expr) -> Evaluator:
        method = getattr(self, f"_expr_{type(node).__name__}")
        return method(node)

    def _expr_Number(self, node: n.Number) -> Evaluator:
        value = node.value
        return lambda frame: value

    def _expr_Boolean(self, node: n.Boolean) -> Evaluator:
        value = node.value
        return lambda frame: value

    def _expr_Null(self, node: n.Null) -> Evaluator:
        return lambda frame: NULL

    def _expr_ArrayLiteral(self, node: n.ArrayLiteral) -> Evaluator:
        elements = [self._expr(e) for e in node.elements]
        return lambda frame: [e(frame) for e in elements]

    def _expr_Name(self, node: n.Name) -> Evaluator:
        binding = self.analysis.binding_of(node)
        name = node.id
        if binding.kind == BindingKind.BUILTIN:
            value = BUILTINS[name]
            return lambda frame: value
        if binding.kind == BindingKind.INPUT:

            def load_input(frame: Frame) -> Any:
                try:
                    return frame.context.env[name]
                except KeyError:
                    raise EvaluationFailure(ErrorMessages.NOT_DEFINED.format(name)) from None

            return load_input
        if binding.hoisted:

            def load_constant(frame: Frame) -> Any:
                try:
                    return frame.context.constants[name]
                except KeyError:
                    raise EvaluationFailure(ErrorMessages.NOT_DEFINED.format(name)) from None

            return load_constant
        return lambda frame: frame.lookup(name)

    def _expr_Unary(self, node: n.Unary) -> Evaluator:
        operand = self._expr(node.operand)
        if node.op == "-":
            return lambda frame: -to_number(operand(frame))
        if node.op == "+":
            return lambda frame: to_number(operand(frame))
        return lambda frame: not truthy(operand(frame))

    def _expr_Binary(self, node: n.Binary) -> Evaluator:
        op = binary_op(node.op)
        left = self._expr(node.left)
        right = self._expr(node.right)
        return lambda frame: op(left(frame), right(frame))

    def _expr_Logical(self, node: n.Logical) -> Evaluator:
        left = self._expr(node.left)
        right = self._expr(node.right)
        if node.op == "||":

            def logical_or(frame: Frame) -> Any:
                value = left(frame)
                return value if truthy(value) else right(frame)

            return logical_or

        def logical_and(frame: Frame) -> Any:
            value = left(frame)
            return right(frame) if truthy(value) else value

        return logical_and

    def _expr_Conditional(self, node: n.Conditional) -> Evaluator:
        test = self._expr(node.test)
        consequent = self._expr(node.consequent)
        alternate = self._expr(node.alternate)
        return lambda frame: consequent(frame) if truthy(test(frame)) else alternate(frame)

    def _expr_Call(self, node: n.Call) -> Evaluator:
        args = [self._expr(a) for a in node.args]
        if _is_math_member(node.callee):
            fn = MATH_MEMBERS[node.callee.attr]
            if isinstance(fn, BuiltinFunction):
                invoke = fn.fn
                return lambda frame: invoke(*[a(frame) for a in args])
        callee = self._expr(node.callee)
        label = _label(node.callee)
        return lambda frame: call_value(callee(frame), [a(frame) for a in args], label)

    def _expr_Index(self, node: n.Index) -> Evaluator:
        target = self._expr(node.target)
        index = self._expr(node.index)
        return lambda frame: get_index(target(frame), index(frame))

    def _expr_Member(self, node: n.Member) -> Evaluator:
        if node.attr == "length":
            target = self._expr(node.target)
            return lambda frame: get_length(target(frame))
        value = MATH_MEMBERS[node.attr]
        return lambda frame: value

    def _expr_Assign(self, node: n.Assign) -> Evaluator:
        value = self._expr(node.value)
        combine = binary_op(node.op[:-1]) if node.op != "=" else None
        target = node.target

        if isinstance(target, n.Name):
            name = target.id
            if combine is None:

                def assign_name(frame: Frame) -> Any:
                    result = value(frame)
                    frame.assign(name, result)
                    return result

                return assign_name

            load = self._expr(target)

            def update_name(frame: Frame) -> Any:
                result = combine(load(frame), value(frame))
                frame.assign(name, result)
                return result

            return update_name

        container = self._expr(target.target)
        index = self._expr(target.index)

        def assign_index(frame: Frame) -> Any:
            array = container(frame)
            key = index(frame)
            if combine is None:
                result = value(frame)
            else:
                result = combine(get_index(array, key), value(frame))
            set_index(array, key, result)
            return result

        return assign_index

    def _expr_Lambda(self, node: n.Lambda) -> Evaluator:
        return self._function("anonymous", node.params, node.body)


def compile_script(text: str, declared_inputs: Iterable[str]) -> CompiledPixelFunction:
    """
    Parse, check and compile a pixel script.

    Args:
        text: Script source, a function body returning [r, g, b] or [r, g, b, a]
        declared_inputs: Input names bound to band arrays, in request order

    Raises:
        ScriptSyntaxError, CapabilityViolation, UndeclaredInputReference
    """
    declared = tuple(declared_inputs)
    if len(text) > MAX_SCRIPT_LENGTH:
        raise CapabilityViolation(ErrorMessages.SCRIPT_TOO_LONG.format(len(text), MAX_SCRIPT_LENGTH))

    try:
        program = parse(text)
        analysis = check(program, text, declared)
        compiler = ScriptCompiler(analysis)
        body = compiler.compile()
    except RecursionError as exc:
        # Long operator chains build deep trees without deep parser nesting
        raise ScriptSyntaxError(ErrorMessages.NESTING_TOO_DEEP.format(MAX_NESTING_DEPTH)) from exc

    logger.debug(
        f"Compiled script: {len(program.body)} statements, "
        f"{len(compiler.constants)} constants hoisted, "
        f"inputs referenced: {sorted(analysis.referenced_inputs)}"
    )
    return CompiledPixelFunction(
        body, compiler.constants, declared, frozenset(analysis.referenced_inputs)
    )
