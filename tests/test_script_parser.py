"""Tests for the pixel script lexer and parser."""

import pytest

from chuk_mcp_tilemachine.core.errors import CapabilityViolation, ScriptSyntaxError
from chuk_mcp_tilemachine.core.script import nodes as n
from chuk_mcp_tilemachine.core.script.lexer import TokenKind, tokenize
from chuk_mcp_tilemachine.core.script.parser import parse


# ── Lexer ──────────────────────────────────────────────────────────


class TestTokenize:
    def test_numbers(self):
        tokens = tokenize("1 2.5 .5 1e3 0x1F")
        values = [t.value for t in tokens if t.kind == TokenKind.NUMBER]
        assert values == ["1", "2.5", ".5", "1e3", "31"]

    def test_longest_punctuator_wins(self):
        tokens = tokenize("a === b ** c")
        assert [t.value for t in tokens if t.kind == TokenKind.PUNCT] == ["===", "**"]

    def test_comments_are_skipped(self):
        tokens = tokenize("// line\n/* block\n */ a")
        assert [t.value for t in tokens] == ["a", ""]

    def test_positions_are_one_based(self):
        tokens = tokenize("let x\n  = 1")
        eq = [t for t in tokens if t.value == "="][0]
        assert (eq.line, eq.column) == (2, 3)

    def test_keywords(self):
        tokens = tokenize("let while foo")
        assert [t.kind for t in tokens[:3]] == [TokenKind.KEYWORD, TokenKind.KEYWORD, TokenKind.NAME]

    def test_eof_token(self):
        assert tokenize("")[-1].kind == TokenKind.EOF

    def test_string_literal_rejected(self):
        with pytest.raises(ScriptSyntaxError, match="String literals"):
            tokenize('let a = "x"')

    def test_unterminated_comment(self):
        with pytest.raises(ScriptSyntaxError, match="Unterminated comment"):
            tokenize("/* never closed")

    def test_unexpected_character(self):
        with pytest.raises(ScriptSyntaxError, match="Unexpected character '#'"):
            tokenize("a # b")

    def test_identifier_after_number(self):
        with pytest.raises(ScriptSyntaxError):
            tokenize("3px")

    @pytest.mark.parametrize("text", ["return [\u00b2, 0, 0]", "1\u0663", "\u0663"])
    def test_only_ascii_digits_are_numbers(self, text):
        with pytest.raises(ScriptSyntaxError, match="Unexpected character"):
            tokenize(text)


# ── Statements ─────────────────────────────────────────────────────


class TestStatements:
    def test_return_array(self):
        program = parse("return [1, 2, 3]")
        (stmt,) = program.body
        assert isinstance(stmt, n.Return)
        assert isinstance(stmt.value, n.ArrayLiteral)
        assert len(stmt.value.elements) == 3

    def test_var_decl_kinds(self):
        program = parse("let a = 1; const b = 2; var c")
        kinds = [s.kind for s in program.body]
        assert kinds == ["let", "const", "var"]
        assert program.body[2].declarators[0].init is None

    def test_multiple_declarators(self):
        program = parse("let a = 1, b = 2")
        assert [d.target.id for d in program.body[0].declarators] == ["a", "b"]

    def test_array_destructuring(self):
        program = parse("const [r, , b] = rgb")
        target = program.body[0].declarators[0].target
        assert isinstance(target, n.ArrayPattern)
        assert target.names == ["r", None, "b"]

    def test_const_needs_initializer(self):
        with pytest.raises(ScriptSyntaxError, match="Missing initializer"):
            parse("const a;")

    def test_pattern_needs_initializer(self):
        with pytest.raises(ScriptSyntaxError, match="Missing initializer"):
            parse("let [a, b];")

    def test_function_declaration(self):
        program = parse("function f(a, b) { return a + b }")
        fn = program.body[0]
        assert isinstance(fn, n.FunctionDecl)
        assert fn.name == "f"
        assert fn.params == ["a", "b"]

    def test_duplicate_params_rejected(self):
        with pytest.raises(ScriptSyntaxError, match="Duplicate parameter"):
            parse("function f(a, a) { return a }")

    def test_if_else(self):
        program = parse("if (a > 1) { return [1,1,1] } else return [0,0,0]")
        stmt = program.body[0]
        assert isinstance(stmt, n.If)
        assert isinstance(stmt.consequent, n.Block)
        assert isinstance(stmt.alternate, n.Return)

    def test_newline_ends_statement(self):
        program = parse("let a = 1\nlet b = 2\nreturn [a, b, 0]")
        assert len(program.body) == 3

    def test_missing_separator_on_same_line(self):
        with pytest.raises(ScriptSyntaxError, match="Unexpected token"):
            parse("let a = 1 let b = 2")

    def test_bare_return_before_newline(self):
        program = parse("return\n[1, 2, 3]")
        assert program.body[0].value is None

    def test_empty_statement(self):
        program = parse(";;return [0,0,0]")
        assert isinstance(program.body[0], n.Empty)

    def test_unclosed_block(self):
        with pytest.raises(ScriptSyntaxError, match="end of input"):
            parse("if (a) { return [1,2,3]")


# ── Expressions ────────────────────────────────────────────────────


class TestExpressions:
    def _expr(self, text):
        return parse(f"x = {text}").body[0].expr.value

    def test_multiplication_binds_tighter(self):
        expr = self._expr("1 + 2 * 3")
        assert isinstance(expr, n.Binary) and expr.op == "+"
        assert isinstance(expr.right, n.Binary) and expr.right.op == "*"

    def test_exponent_is_right_associative(self):
        expr = self._expr("2 ** 3 ** 2")
        assert expr.op == "**"
        assert isinstance(expr.right, n.Binary) and expr.right.op == "**"

    def test_unary_minus_applies_after_exponent(self):
        expr = self._expr("-2 ** 2")
        assert isinstance(expr, n.Unary)
        assert isinstance(expr.operand, n.Binary)

    def test_logical_and_conditional(self):
        expr = self._expr("a && b || c ? 1 : 2")
        assert isinstance(expr, n.Conditional)
        assert isinstance(expr.test, n.Logical) and expr.test.op == "||"

    def test_postfix_chain(self):
        expr = self._expr("Math.max(a[0], b.length)")
        assert isinstance(expr, n.Call)
        assert isinstance(expr.callee, n.Member) and expr.callee.attr == "max"
        assert isinstance(expr.args[0], n.Index)

    def test_arrow_function_expression_body(self):
        expr = self._expr("(a, b) => a + b")
        assert isinstance(expr, n.Lambda)
        assert expr.params == ["a", "b"]
        assert isinstance(expr.body, n.Binary)

    def test_single_param_arrow(self):
        expr = self._expr("v => v * 2")
        assert isinstance(expr, n.Lambda) and expr.params == ["v"]

    def test_parenthesised_expression_is_not_arrow(self):
        expr = self._expr("(a + b) * 2")
        assert isinstance(expr, n.Binary) and expr.op == "*"

    def test_anonymous_function(self):
        expr = self._expr("function (v) { return v }")
        assert isinstance(expr, n.Lambda)
        assert isinstance(expr.body, n.Block)

    def test_compound_assignment(self):
        stmt = parse("a += 2").body[0]
        assert stmt.expr.op == "+="

    def test_invalid_assignment_target(self):
        with pytest.raises(ScriptSyntaxError, match="Invalid assignment target"):
            parse("1 = 2")

    def test_comma_expression_rejected(self):
        with pytest.raises(ScriptSyntaxError, match="Comma expressions"):
            parse("a = 1, 2")

    def test_increment_rejected(self):
        with pytest.raises(ScriptSyntaxError, match="Unsupported operator"):
            parse("a++")

    def test_array_holes_rejected(self):
        with pytest.raises(ScriptSyntaxError, match="holes"):
            parse("return [1, , 3]")


# ── Errors ─────────────────────────────────────────────────────────


class TestSyntaxErrorFormat:
    def test_message_has_line_and_caret(self):
        with pytest.raises(ScriptSyntaxError) as exc_info:
            parse("let a = 1\nlet b = )")
        err = exc_info.value
        assert err.line == 2
        assert err.column == 9
        text = str(err)
        assert text.startswith("script:2: SyntaxError:")
        assert "let b = )" in text
        assert text.endswith(" " * 8 + "^")

    def test_unexpected_end_of_input(self):
        with pytest.raises(ScriptSyntaxError, match="Unexpected end of input"):
            parse("return [1, 2,")

    @pytest.mark.parametrize("keyword", ["while", "for", "new", "import", "class", "this"])
    def test_forbidden_keywords_are_capability_violations(self, keyword):
        with pytest.raises(CapabilityViolation, match=f"'{keyword}' is not allowed"):
            parse(f"{keyword} (x) {{ }}")


# ── Nesting ────────────────────────────────────────────────────────


class TestNestingLimit:
    def test_deep_parentheses(self):
        with pytest.raises(ScriptSyntaxError, match="nested too deeply") as exc_info:
            parse("return [" + "(" * 80 + "rgb[0]" + ")" * 80 + ", 0, 0]")
        assert exc_info.value.line == 1

    def test_long_unary_chain(self):
        with pytest.raises(ScriptSyntaxError, match="nested too deeply"):
            parse("return [" + "- " * 200 + "1, 0, 0]")

    def test_long_exponent_chain(self):
        with pytest.raises(ScriptSyntaxError, match="nested too deeply"):
            parse("return [" + "2 ** " * 200 + "1, 0, 0]")

    def test_deep_blocks(self):
        with pytest.raises(ScriptSyntaxError, match="nested too deeply"):
            parse("{" * 100 + "}" * 100 + "\nreturn [0, 0, 0]")

    def test_depth_resets_between_statements(self):
        nested = "let a = " + "(" * 20 + "1" + ")" * 20 + "\n"
        program = parse(nested * 10 + "return [a, 0, 0]")
        assert len(program.body) == 11
