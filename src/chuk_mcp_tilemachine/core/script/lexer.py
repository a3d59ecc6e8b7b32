"""
Tokenizer for the pixel script language.

Produces a flat token list with 1-based line/column positions. Whitespace and
comments are dropped; newlines are not significant.
"""

from dataclasses import dataclass

from ...constants import FORBIDDEN_KEYWORDS, SCRIPT_KEYWORDS
from ..errors import ScriptSyntaxError


class TokenKind:
    NUMBER = "number"
    NAME = "name"
    KEYWORD = "keyword"
    PUNCT = "punct"
    EOF = "eof"


# Longest first so that "===" wins over "==" and "="
PUNCTUATORS = [
    "===", "!==", "**=",
    "==", "!=", "<=", ">=", "&&", "||", "**", "+=", "-=", "*=", "/=", "%=", "=>", "++", "--",
    "+", "-", "*", "/", "%", "<", ">", "!", "=", "(", ")", "[", "]", "{", "}", ",", ";",
    ".", "?", ":",
]


def _is_digit(ch: str) -> bool:
    # ASCII only: str.isdigit() also accepts superscripts
    return "0" <= ch <= "9"


@dataclass(frozen=True)
class Token:
    kind: str
    value: str
    line: int
    column: int

    def is_punct(self, *values: str) -> bool:
        return self.kind == TokenKind.PUNCT and self.value in values

    def is_keyword(self, *values: str) -> bool:
        return self.kind == TokenKind.KEYWORD and self.value in values


class Lexer:
    """Single-pass scanner over the script text."""

    def __init__(self, text: str) -> None:
        self.text = text
        self.lines = text.split("\n")
        self.pos = 0
        self.line = 1
        self.column = 1

    def error(self, message: str, line: int | None = None, column: int | None = None) -> ScriptSyntaxError:
        line = line or self.line
        column = column or self.column
        source_line = self.lines[line - 1] if 0 < line <= len(self.lines) else None
        return ScriptSyntaxError(message, line, column, source_line)

    def _advance(self, count: int = 1) -> None:
        for _ in range(count):
            if self.text[self.pos] == "\n":
                self.line += 1
                self.column = 1
            else:
                self.column += 1
            self.pos += 1

    def _skip_trivia(self) -> None:
        text = self.text
        while self.pos < len(text):
            ch = text[self.pos]
            if ch in " \t\r\n\f\v":
                self._advance()
            elif text.startswith("//", self.pos):
                while self.pos < len(text) and text[self.pos] != "\n":
                    self._advance()
            elif text.startswith("/*", self.pos):
                line, column = self.line, self.column
                end = text.find("*/", self.pos + 2)
                if end < 0:
                    raise self.error("Unterminated comment", line, column)
                self._advance(end + 2 - self.pos)
            else:
                return

    def _number(self) -> Token:
        text = self.text
        start, line, column = self.pos, self.line, self.column
        if text.startswith(("0x", "0X"), self.pos):
            self._advance(2)
            digits_start = self.pos
            while self.pos < len(text) and text[self.pos] in "0123456789abcdefABCDEF":
                self._advance()
            if self.pos == digits_start:
                raise self.error("Invalid hexadecimal literal", line, column)
            return Token(TokenKind.NUMBER, str(int(text[digits_start:self.pos], 16)), line, column)

        while self.pos < len(text) and _is_digit(text[self.pos]):
            self._advance()
        if self.pos < len(text) and text[self.pos] == ".":
            self._advance()
            while self.pos < len(text) and _is_digit(text[self.pos]):
                self._advance()
        if self.pos < len(text) and text[self.pos] in "eE":
            self._advance()
            if self.pos < len(text) and text[self.pos] in "+-":
                self._advance()
            exp_start = self.pos
            while self.pos < len(text) and _is_digit(text[self.pos]):
                self._advance()
            if self.pos == exp_start:
                raise self.error("Invalid number exponent", line, column)
        raw = text[start:self.pos]
        if raw == ".":
            raise self.error("Unexpected token '.'", line, column)
        if self.pos < len(text) and (text[self.pos].isalpha() or text[self.pos] == "_"):
            raise self.error("Identifier directly after number", self.line, self.column)
        return Token(TokenKind.NUMBER, raw, line, column)

    def _word(self) -> Token:
        text = self.text
        start, line, column = self.pos, self.line, self.column
        while self.pos < len(text) and (text[self.pos].isalnum() or text[self.pos] in "_$"):
            self._advance()
        word = text[start:self.pos]
        if word in SCRIPT_KEYWORDS or word in FORBIDDEN_KEYWORDS:
            return Token(TokenKind.KEYWORD, word, line, column)
        return Token(TokenKind.NAME, word, line, column)

    def tokens(self) -> list[Token]:
        out: list[Token] = []
        text = self.text
        while True:
            self._skip_trivia()
            if self.pos >= len(text):
                out.append(Token(TokenKind.EOF, "", self.line, self.column))
                return out
            ch = text[self.pos]
            if _is_digit(ch) or (ch == "." and self.pos + 1 < len(text) and _is_digit(text[self.pos + 1])):
                out.append(self._number())
            elif ch.isalpha() or ch in "_$":
                out.append(self._word())
            elif ch in "'\"`":
                raise self.error("String literals are not supported")
            else:
                for punct in PUNCTUATORS:
                    if text.startswith(punct, self.pos):
                        out.append(Token(TokenKind.PUNCT, punct, self.line, self.column))
                        self._advance(len(punct))
                        break
                else:
                    raise self.error(f"Unexpected character '{ch}'")


def tokenize(text: str) -> list[Token]:
    """Tokenize script text, raising ScriptSyntaxError on malformed input."""
    return Lexer(text).tokens()
