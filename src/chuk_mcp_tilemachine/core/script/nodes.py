"""AST node types for the pixel script language."""

from dataclasses import dataclass, field
from typing import Union


@dataclass
class Node:
    line: int = field(default=0, kw_only=True)
    column: int = field(default=0, kw_only=True)


# ---------------------------------------------------------------------------
# Expressions
# ---------------------------------------------------------------------------


@dataclass
class Number(Node):
    value: float


@dataclass
class Boolean(Node):
    value: bool


@dataclass
class Null(Node):
    pass


@dataclass
class ArrayLiteral(Node):
    elements: list["Expr"]


@dataclass
class Name(Node):
    id: str


@dataclass
class Unary(Node):
    op: str
    operand: "Expr"


@dataclass
class Binary(Node):
    op: str
    left: "Expr"
    right: "Expr"


@dataclass
class Logical(Node):
    op: str
    left: "Expr"
    right: "Expr"


@dataclass
class Conditional(Node):
    test: "Expr"
    consequent: "Expr"
    alternate: "Expr"


@dataclass
class Call(Node):
    callee: "Expr"
    args: list["Expr"]


@dataclass
class Index(Node):
    target: "Expr"
    index: "Expr"


@dataclass
class Member(Node):
    target: "Expr"
    attr: str


@dataclass
class Assign(Node):
    op: str
    target: "Expr"
    value: "Expr"


@dataclass
class Lambda(Node):
    params: list[str]
    body: Union["Block", "Expr"]


Expr = Union[
    Number, Boolean, Null, ArrayLiteral, Name, Unary, Binary, Logical, Conditional,
    Call, Index, Member, Assign, Lambda,
]


# ---------------------------------------------------------------------------
# Statements
# ---------------------------------------------------------------------------


@dataclass
class ArrayPattern(Node):
    names: list[str | None]


@dataclass
class Declarator(Node):
    target: Name | ArrayPattern
    init: Expr | None


@dataclass
class VarDecl(Node):
    kind: str
    declarators: list[Declarator]


@dataclass
class FunctionDecl(Node):
    name: str
    params: list[str]
    body: "Block"


@dataclass
class Return(Node):
    value: Expr | None


@dataclass
class If(Node):
    test: Expr
    consequent: "Stmt"
    alternate: "Stmt | None"


@dataclass
class Block(Node):
    body: list["Stmt"]


@dataclass
class ExprStmt(Node):
    expr: Expr


@dataclass
class Empty(Node):
    pass


Stmt = Union[VarDecl, FunctionDecl, Return, If, Block, ExprStmt, Empty]


@dataclass
class Program(Node):
    body: list[Stmt]


def declared_names(target: Name | ArrayPattern) -> list[str]:
    """Names bound by a declarator target."""
    if isinstance(target, Name):
        return [target.id]
    return [n for n in target.names if n is not None]
