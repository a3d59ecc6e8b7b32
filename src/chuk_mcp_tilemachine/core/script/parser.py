"""
Recursive-descent parser for the pixel script language.

The script text is a function body: a sequence of statements that ends by
returning an array of channel values. Operator precedence follows JavaScript
for the supported subset.
"""

from contextlib import contextmanager
from typing import Iterator

from ...constants import FORBIDDEN_KEYWORDS, MAX_NESTING_DEPTH, ErrorMessages
from ..errors import CapabilityViolation, ScriptSyntaxError
from . import nodes as n
from .lexer import Token, TokenKind, tokenize

ASSIGN_OPS = ("=", "+=", "-=", "*=", "/=", "%=", "**=")
EQUALITY_OPS = ("==", "!=", "===", "!==")
RELATIONAL_OPS = ("<", "<=", ">", ">=")
DECL_KINDS = ("let", "const", "var")


class Parser:
    def __init__(self, text: str) -> None:
        self.lines = text.split("\n")
        self.tokens = tokenize(text)
        self.pos = 0
        self.depth = 0

    # ------------------------------------------------------------------
    # Token helpers
    # ------------------------------------------------------------------

    @property
    def current(self) -> Token:
        return self.tokens[self.pos]

    @property
    def previous(self) -> Token:
        return self.tokens[self.pos - 1] if self.pos > 0 else self.tokens[0]

    def peek(self, offset: int = 1) -> Token:
        index = min(self.pos + offset, len(self.tokens) - 1)
        return self.tokens[index]

    def advance(self) -> Token:
        token = self.current
        if token.kind != TokenKind.EOF:
            self.pos += 1
        return token

    def error(self, message: str, token: Token | None = None) -> ScriptSyntaxError:
        token = token or self.current
        source_line = self.lines[token.line - 1] if 0 < token.line <= len(self.lines) else None
        return ScriptSyntaxError(message, token.line, token.column, source_line, len(token.value))

    def unexpected(self, token: Token | None = None) -> Exception:
        token = token or self.current
        if token.kind == TokenKind.EOF:
            return self.error("Unexpected end of input", token)
        if token.kind == TokenKind.KEYWORD and token.value not in ("else",):
            return self._forbidden_or_unexpected(token)
        return self.error(f"Unexpected token '{token.value}'", token)

    def _forbidden_or_unexpected(self, token: Token) -> Exception:
        if token.value in FORBIDDEN_KEYWORDS:
            return CapabilityViolation(
                ErrorMessages.FORBIDDEN_KEYWORD.format(token.value), token.line
            )
        return self.error(f"Unexpected token '{token.value}'", token)

    def expect_punct(self, value: str) -> Token:
        if not self.current.is_punct(value):
            if self.current.kind == TokenKind.EOF:
                raise self.error(f"Expected '{value}' but reached end of input")
            raise self.error(f"Expected '{value}' but found '{self.current.value}'")
        return self.advance()

    def expect_name(self) -> Token:
        if self.current.kind != TokenKind.NAME:
            if self.current.kind == TokenKind.KEYWORD:
                raise self._forbidden_or_unexpected(self.current)
            raise self.error(f"Expected identifier but found '{self.current.value}'")
        return self.advance()

    def end_statement(self) -> None:
        """Accept an explicit ';' or an implicit end before '}', EOF or a newline."""
        if self.current.is_punct(";"):
            self.advance()
            return
        if self.current.kind == TokenKind.EOF or self.current.is_punct("}"):
            return
        if self.current.line > self.previous.line:
            return
        raise self.unexpected()

    @contextmanager
    def nested(self) -> Iterator[None]:
        """Track statement/expression nesting so deep scripts fail as syntax errors."""
        self.depth += 1
        if self.depth > MAX_NESTING_DEPTH:
            raise self.error(ErrorMessages.NESTING_TOO_DEEP.format(MAX_NESTING_DEPTH))
        try:
            yield
        finally:
            self.depth -= 1

    @staticmethod
    def _pos(token: Token) -> dict:
        return {"line": token.line, "column": token.column}

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    def parse_program(self) -> n.Program:
        body = []
        while self.current.kind != TokenKind.EOF:
            body.append(self.parse_statement())
        return n.Program(body, line=1, column=1)

    def parse_statement(self) -> n.Stmt:
        with self.nested():
            return self._statement()

    def _statement(self) -> n.Stmt:
        token = self.current
        if token.is_punct("{"):
            return self.parse_block()
        if token.is_punct(";"):
            self.advance()
            return n.Empty(**self._pos(token))
        if token.kind == TokenKind.KEYWORD:
            if token.value in DECL_KINDS:
                decl = self.parse_var_decl()
                self.end_statement()
                return decl
            if token.value == "function":
                return self.parse_function_decl()
            if token.value == "return":
                return self.parse_return()
            if token.value == "if":
                return self.parse_if()
            if token.value not in ("true", "false", "null"):
                raise self.unexpected()
        expr = self.parse_expression()
        self.end_statement()
        return n.ExprStmt(expr, **self._pos(token))

    def parse_block(self) -> n.Block:
        start = self.expect_punct("{")
        body = []
        while not self.current.is_punct("}"):
            if self.current.kind == TokenKind.EOF:
                raise self.error("Expected '}' but reached end of input")
            body.append(self.parse_statement())
        self.advance()
        return n.Block(body, **self._pos(start))

    def parse_var_decl(self) -> n.VarDecl:
        kind_token = self.advance()
        declarators = []
        while True:
            start = self.current
            if start.is_punct("["):
                target: n.Name | n.ArrayPattern = self.parse_array_pattern()
            else:
                name = self.expect_name()
                target = n.Name(name.value, **self._pos(name))
            init = None
            if self.current.is_punct("="):
                self.advance()
                init = self.parse_assignment()
            elif kind_token.value == "const" or isinstance(target, n.ArrayPattern):
                raise self.error("Missing initializer in declaration")
            declarators.append(n.Declarator(target, init, **self._pos(start)))
            if not self.current.is_punct(","):
                break
            self.advance()
        return n.VarDecl(kind_token.value, declarators, **self._pos(kind_token))

    def parse_array_pattern(self) -> n.ArrayPattern:
        start = self.expect_punct("[")
        names: list[str | None] = []
        while not self.current.is_punct("]"):
            if self.current.is_punct(","):
                self.advance()
                names.append(None)
                continue
            names.append(self.expect_name().value)
            if not self.current.is_punct("]"):
                self.expect_punct(",")
        self.advance()
        return n.ArrayPattern(names, **self._pos(start))

    def parse_params(self) -> list[str]:
        self.expect_punct("(")
        params: list[str] = []
        while not self.current.is_punct(")"):
            token = self.expect_name()
            if token.value in params:
                raise self.error(f"Duplicate parameter name '{token.value}'", token)
            params.append(token.value)
            if not self.current.is_punct(")"):
                self.expect_punct(",")
        self.advance()
        return params

    def parse_function_decl(self) -> n.FunctionDecl:
        start = self.advance()
        name = self.expect_name()
        params = self.parse_params()
        body = self.parse_block()
        return n.FunctionDecl(name.value, params, body, **self._pos(start))

    def parse_return(self) -> n.Return:
        start = self.advance()
        value = None
        if not (
            self.current.is_punct(";", "}")
            or self.current.kind == TokenKind.EOF
            or self.current.line > start.line
        ):
            value = self.parse_expression()
        self.end_statement()
        return n.Return(value, **self._pos(start))

    def parse_if(self) -> n.If:
        start = self.advance()
        self.expect_punct("(")
        test = self.parse_expression()
        self.expect_punct(")")
        consequent = self.parse_statement()
        alternate = None
        if self.current.is_keyword("else"):
            self.advance()
            alternate = self.parse_statement()
        return n.If(test, consequent, alternate, **self._pos(start))

    # ------------------------------------------------------------------
    # Expressions
    # ------------------------------------------------------------------

    def parse_expression(self) -> n.Expr:
        expr = self.parse_assignment()
        if self.current.is_punct(","):
            raise self.error("Comma expressions are not supported")
        return expr

    def parse_assignment(self) -> n.Expr:
        with self.nested():
            return self._assignment()

    def _assignment(self) -> n.Expr:
        if self._at_arrow():
            return self.parse_arrow()
        start = self.current
        target = self.parse_conditional()
        if self.current.kind == TokenKind.PUNCT and self.current.value in ASSIGN_OPS:
            op_token = self.advance()
            if not isinstance(target, (n.Name, n.Index, n.Member)):
                raise self.error(ErrorMessages.INVALID_ASSIGN_TARGET, op_token)
            value = self.parse_assignment()
            return n.Assign(op_token.value, target, value, **self._pos(start))
        return target

    def _at_arrow(self) -> bool:
        token = self.current
        if token.kind == TokenKind.NAME:
            return self.peek().is_punct("=>")
        if not token.is_punct("("):
            return False
        offset = 1
        while True:
            tok = self.peek(offset)
            if tok.is_punct(")"):
                return self.peek(offset + 1).is_punct("=>")
            if tok.kind != TokenKind.NAME:
                return False
            offset += 1
            tok = self.peek(offset)
            if tok.is_punct(","):
                offset += 1
            elif not tok.is_punct(")"):
                return False

    def parse_arrow(self) -> n.Lambda:
        start = self.current
        if start.kind == TokenKind.NAME:
            self.advance()
            params = [start.value]
        else:
            params = self.parse_params()
        self.expect_punct("=>")
        if self.current.is_punct("{"):
            body: n.Block | n.Expr = self.parse_block()
        else:
            body = self.parse_assignment()
        return n.Lambda(params, body, **self._pos(start))

    def parse_conditional(self) -> n.Expr:
        start = self.current
        test = self.parse_binary_or()
        if self.current.is_punct("?"):
            self.advance()
            consequent = self.parse_assignment()
            self.expect_punct(":")
            alternate = self.parse_assignment()
            return n.Conditional(test, consequent, alternate, **self._pos(start))
        return test

    def parse_binary_or(self) -> n.Expr:
        left = self.parse_binary_and()
        while self.current.is_punct("||"):
            op = self.advance()
            right = self.parse_binary_and()
            left = n.Logical("||", left, right, **self._pos(op))
        return left

    def parse_binary_and(self) -> n.Expr:
        left = self.parse_equality()
        while self.current.is_punct("&&"):
            op = self.advance()
            right = self.parse_equality()
            left = n.Logical("&&", left, right, **self._pos(op))
        return left

    def _binary_level(self, ops: tuple[str, ...], operand) -> n.Expr:
        left = operand()
        while self.current.kind == TokenKind.PUNCT and self.current.value in ops:
            op = self.advance()
            right = operand()
            left = n.Binary(op.value, left, right, **self._pos(op))
        return left

    def parse_equality(self) -> n.Expr:
        return self._binary_level(EQUALITY_OPS, self.parse_relational)

    def parse_relational(self) -> n.Expr:
        return self._binary_level(RELATIONAL_OPS, self.parse_additive)

    def parse_additive(self) -> n.Expr:
        return self._binary_level(("+", "-"), self.parse_multiplicative)

    def parse_multiplicative(self) -> n.Expr:
        return self._binary_level(("*", "/", "%"), self.parse_unary)

    def parse_unary(self) -> n.Expr:
        token = self.current
        if token.is_punct("-", "+", "!"):
            self.advance()
            with self.nested():
                operand = self.parse_unary()
            return n.Unary(token.value, operand, **self._pos(token))
        if token.is_punct("++", "--"):
            raise self.error(f"Unsupported operator '{token.value}'", token)
        return self.parse_exponent()

    def parse_exponent(self) -> n.Expr:
        base = self.parse_postfix()
        if self.current.is_punct("**"):
            op = self.advance()
            with self.nested():
                exponent = self.parse_unary()
            return n.Binary("**", base, exponent, **self._pos(op))
        return base

    def parse_postfix(self) -> n.Expr:
        expr = self.parse_primary()
        while True:
            token = self.current
            if token.is_punct("("):
                self.advance()
                args = []
                while not self.current.is_punct(")"):
                    args.append(self.parse_assignment())
                    if not self.current.is_punct(")"):
                        self.expect_punct(",")
                self.advance()
                expr = n.Call(expr, args, **self._pos(token))
            elif token.is_punct("["):
                self.advance()
                index = self.parse_expression()
                self.expect_punct("]")
                expr = n.Index(expr, index, **self._pos(token))
            elif token.is_punct("."):
                self.advance()
                attr = self.current
                if attr.kind not in (TokenKind.NAME, TokenKind.KEYWORD):
                    raise self.error("Expected property name after '.'")
                self.advance()
                expr = n.Member(expr, attr.value, **self._pos(attr))
            elif token.is_punct("++", "--"):
                raise self.error(f"Unsupported operator '{token.value}'", token)
            else:
                return expr

    def parse_primary(self) -> n.Expr:
        token = self.current
        pos = self._pos(token)
        if token.kind == TokenKind.NUMBER:
            self.advance()
            return n.Number(float(token.value), **pos)
        if token.kind == TokenKind.NAME:
            self.advance()
            return n.Name(token.value, **pos)
        if token.kind == TokenKind.KEYWORD:
            if token.value in ("true", "false"):
                self.advance()
                return n.Boolean(token.value == "true", **pos)
            if token.value == "null":
                self.advance()
                return n.Null(**pos)
            if token.value == "function":
                self.advance()
                if self.current.kind == TokenKind.NAME:
                    self.advance()
                params = self.parse_params()
                body = self.parse_block()
                return n.Lambda(params, body, **pos)
            raise self.unexpected()
        if token.is_punct("("):
            self.advance()
            expr = self.parse_expression()
            self.expect_punct(")")
            return expr
        if token.is_punct("["):
            self.advance()
            elements = []
            while not self.current.is_punct("]"):
                if self.current.is_punct(","):
                    raise self.error("Array holes are not supported")
                elements.append(self.parse_assignment())
                if not self.current.is_punct("]"):
                    self.expect_punct(",")
            self.advance()
            return n.ArrayLiteral(elements, **pos)
        raise self.unexpected()


def parse(text: str) -> n.Program:
    """Parse script text into a Program node."""
    return Parser(text).parse_program()
