"""
Static capability pass for parsed pixel scripts.

Resolves every identifier against block scopes, declared inputs and the
builtins, and rejects anything that could observe or affect the world outside
one pixel's computation. Runs once per request, before any raster is opened.
"""

from dataclasses import dataclass, field

from ...constants import (
    FORBIDDEN_GLOBALS,
    IMPURE_MATH_MEMBERS,
    MATH_CONSTANTS,
    MATH_FUNCTIONS,
    SCRIPT_GLOBALS,
    ErrorMessages,
)
from ..errors import CapabilityViolation, ScriptSyntaxError, UndeclaredInputReference
from . import nodes as n


class BindingKind:
    BUILTIN = "builtin"
    INPUT = "input"
    LET = "let"
    CONST = "const"
    VAR = "var"
    FUNCTION = "function"
    PARAM = "param"


READ_ONLY_KINDS = (BindingKind.BUILTIN, BindingKind.INPUT)


@dataclass(eq=False)
class Binding:
    name: str
    kind: str
    top_level: bool = False
    mutated: bool = False
    hoisted: bool = False


class Scope:
    def __init__(self, parent: "Scope | None" = None, top_level: bool = False) -> None:
        self.parent = parent
        self.top_level = top_level
        self.bindings: dict[str, Binding] = {}

    def lookup(self, name: str) -> Binding | None:
        scope: Scope | None = self
        while scope is not None:
            binding = scope.bindings.get(name)
            if binding is not None:
                return binding
            scope = scope.parent
        return None


@dataclass
class Analysis:
    """Result of a successful check."""

    program: n.Program
    declared_inputs: tuple[str, ...]
    # id(Name node) -> the binding it resolves to
    resolved: dict[int, Binding] = field(default_factory=dict)
    referenced_inputs: set[str] = field(default_factory=set)
    # Top-level `name = init` declarators whose name is never reassigned
    hoist_candidates: list[tuple[n.Declarator, Binding]] = field(default_factory=list)

    def binding_of(self, node: n.Name) -> Binding:
        return self.resolved[id(node)]


class Checker:
    def __init__(self, source_lines: list[str], declared_inputs: tuple[str, ...]) -> None:
        self.lines = source_lines
        self.declared_inputs = declared_inputs
        self.undeclared: set[str] = set()
        self.has_top_level_return = False
        self.analysis: Analysis | None = None

    def syntax_error(self, message: str, node: n.Node) -> ScriptSyntaxError:
        source_line = self.lines[node.line - 1] if 0 < node.line <= len(self.lines) else None
        return ScriptSyntaxError(message, node.line, node.column, source_line)

    def check(self, program: n.Program) -> Analysis:
        self.analysis = Analysis(program, self.declared_inputs)

        builtins = Scope()
        for name in SCRIPT_GLOBALS:
            builtins.bindings[name] = Binding(name, BindingKind.BUILTIN)
        inputs = Scope(builtins)
        for name in self.declared_inputs:
            inputs.bindings[name] = Binding(name, BindingKind.INPUT)
        top = Scope(inputs, top_level=True)

        self._check_block(program.body, top, in_function=False)

        if self.undeclared:
            names = sorted(self.undeclared)
            raise UndeclaredInputReference(
                ErrorMessages.UNDECLARED_INPUT.format(
                    ", ".join(names), ", ".join(self.declared_inputs) or "none"
                ),
                names,
            )
        if not self.has_top_level_return:
            raise ScriptSyntaxError(ErrorMessages.MISSING_RETURN)

        self._collect_hoist_candidates(program, top)
        return self.analysis

    # ------------------------------------------------------------------
    # Declarations
    # ------------------------------------------------------------------

    def _declare(self, scope: Scope, name: str, kind: str, node: n.Node) -> None:
        if name in SCRIPT_GLOBALS:
            raise CapabilityViolation(ErrorMessages.READ_ONLY_BINDING.format(name), node.line)
        existing = scope.bindings.get(name)
        if existing is not None and existing.kind == kind == BindingKind.VAR:
            # var may be redeclared; the second declaration is an assignment
            existing.mutated = True
            return
        if existing is not None or (scope.top_level and name in self.declared_inputs):
            raise self.syntax_error(ErrorMessages.REDECLARED.format(name), node)
        scope.bindings[name] = Binding(name, kind, top_level=scope.top_level)

    def _check_block(self, body: list[n.Stmt], scope: Scope, in_function: bool) -> None:
        for stmt in body:
            if isinstance(stmt, n.VarDecl):
                for decl in stmt.declarators:
                    for name in n.declared_names(decl.target):
                        self._declare(scope, name, stmt.kind, decl)
            elif isinstance(stmt, n.FunctionDecl):
                self._declare(scope, stmt.name, BindingKind.FUNCTION, stmt)
        for stmt in body:
            self._check_stmt(stmt, scope, in_function)

    def _check_nested(self, stmt: n.Stmt, scope: Scope, in_function: bool) -> None:
        body = stmt.body if isinstance(stmt, n.Block) else [stmt]
        self._check_block(body, Scope(scope), in_function)

    def _check_function(self, params: list[str], body: n.Block | n.Expr, scope: Scope, node: n.Node) -> None:
        fscope = Scope(scope)
        for param in params:
            self._declare(fscope, param, BindingKind.PARAM, node)
        if isinstance(body, n.Block):
            self._check_block(body.body, fscope, in_function=True)
        else:
            self._check_expr(body, fscope)

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    def _check_stmt(self, stmt: n.Stmt, scope: Scope, in_function: bool) -> None:
        if isinstance(stmt, n.VarDecl):
            for decl in stmt.declarators:
                if decl.init is not None:
                    self._check_expr(decl.init, scope)
        elif isinstance(stmt, n.FunctionDecl):
            self._check_function(stmt.params, stmt.body, scope, stmt)
        elif isinstance(stmt, n.Return):
            if not in_function:
                self.has_top_level_return = True
            if stmt.value is not None:
                self._check_expr(stmt.value, scope)
        elif isinstance(stmt, n.If):
            self._check_expr(stmt.test, scope)
            self._check_nested(stmt.consequent, scope, in_function)
            if stmt.alternate is not None:
                self._check_nested(stmt.alternate, scope, in_function)
        elif isinstance(stmt, n.Block):
            self._check_block(stmt.body, Scope(scope), in_function)
        elif isinstance(stmt, n.ExprStmt):
            self._check_expr(stmt.expr, scope)

    # ------------------------------------------------------------------
    # Expressions
    # ------------------------------------------------------------------

    def _resolve(self, node: n.Name, scope: Scope) -> Binding | None:
        binding = scope.lookup(node.id)
        if binding is None:
            if node.id in FORBIDDEN_GLOBALS:
                raise CapabilityViolation(ErrorMessages.FORBIDDEN_GLOBAL.format(node.id), node.line)
            self.undeclared.add(node.id)
            return None
        self.analysis.resolved[id(node)] = binding
        if binding.kind == BindingKind.INPUT:
            self.analysis.referenced_inputs.add(node.id)
        return binding

    def _check_expr(self, expr: n.Expr, scope: Scope) -> None:
        if isinstance(expr, (n.Number, n.Boolean, n.Null)):
            return
        if isinstance(expr, n.Name):
            self._resolve(expr, scope)
        elif isinstance(expr, n.ArrayLiteral):
            for element in expr.elements:
                self._check_expr(element, scope)
        elif isinstance(expr, n.Unary):
            self._check_expr(expr.operand, scope)
        elif isinstance(expr, (n.Binary, n.Logical)):
            self._check_expr(expr.left, scope)
            self._check_expr(expr.right, scope)
        elif isinstance(expr, n.Conditional):
            self._check_expr(expr.test, scope)
            self._check_expr(expr.consequent, scope)
            self._check_expr(expr.alternate, scope)
        elif isinstance(expr, n.Call):
            self._check_expr(expr.callee, scope)
            for arg in expr.args:
                self._check_expr(arg, scope)
        elif isinstance(expr, n.Index):
            self._check_expr(expr.target, scope)
            self._check_expr(expr.index, scope)
        elif isinstance(expr, n.Member):
            self._check_member(expr, scope)
        elif isinstance(expr, n.Assign):
            self._check_assign(expr, scope)
        elif isinstance(expr, n.Lambda):
            self._check_function(expr.params, expr.body, scope, expr)

    def _check_member(self, expr: n.Member, scope: Scope) -> None:
        if expr.attr == "length":
            self._check_expr(expr.target, scope)
            return
        target = expr.target
        if isinstance(target, n.Name) and target.id == "Math":
            self._resolve(target, scope)
            if expr.attr in IMPURE_MATH_MEMBERS or (
                expr.attr not in MATH_FUNCTIONS and expr.attr not in MATH_CONSTANTS
            ):
                raise CapabilityViolation(
                    ErrorMessages.FORBIDDEN_MATH_MEMBER.format(expr.attr), expr.line
                )
            return
        raise CapabilityViolation(ErrorMessages.FORBIDDEN_MEMBER.format(expr.attr), expr.line)

    def _check_assign(self, expr: n.Assign, scope: Scope) -> None:
        target = expr.target
        if isinstance(target, n.Name):
            binding = self._resolve(target, scope)
            if binding is not None:
                if binding.kind in READ_ONLY_KINDS:
                    raise CapabilityViolation(
                        ErrorMessages.READ_ONLY_BINDING.format(target.id), expr.line
                    )
                if binding.kind == BindingKind.CONST:
                    raise self.syntax_error(ErrorMessages.CONST_ASSIGN.format(target.id), expr)
                binding.mutated = True
        elif isinstance(target, n.Index):
            root: n.Expr = target
            while isinstance(root, n.Index):
                self._check_expr(root.index, scope)
                root = root.target
            if not isinstance(root, n.Name):
                raise CapabilityViolation(ErrorMessages.INVALID_ASSIGN_TARGET, expr.line)
            binding = self._resolve(root, scope)
            if binding is not None:
                if binding.kind in READ_ONLY_KINDS:
                    raise CapabilityViolation(
                        ErrorMessages.READ_ONLY_BINDING.format(root.id), expr.line
                    )
                binding.mutated = True
        else:
            raise CapabilityViolation(ErrorMessages.INVALID_ASSIGN_TARGET, expr.line)
        self._check_expr(expr.value, scope)

    # ------------------------------------------------------------------
    # Hoisting
    # ------------------------------------------------------------------

    def _collect_hoist_candidates(self, program: n.Program, top: Scope) -> None:
        for stmt in program.body:
            if not isinstance(stmt, n.VarDecl):
                continue
            for decl in stmt.declarators:
                if not isinstance(decl.target, n.Name) or decl.init is None:
                    continue
                binding = top.bindings[decl.target.id]
                if not binding.mutated:
                    self.analysis.hoist_candidates.append((decl, binding))


def check(program: n.Program, source: str, declared_inputs) -> Analysis:
    """Run the static pass, raising on the first capability or scoping error."""
    return Checker(source.split("\n"), tuple(declared_inputs)).check(program)
