from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple


@dataclass
class SourceLocation:
    file: str
    line: int
    column: int
    statement: str


@dataclass
class Node:
    location: SourceLocation


class Statement(Node):
    pass


class Expression(Node):
    pass


# ---- operators ----

BINARY_OPERATORS = (
    "ADD", "SUB", "MUL", "DIV", "MOD",
    "EQ", "NE", "GT", "LT", "GE", "LE",
    "AND", "OR",
    "BITAND", "BITOR", "BITXOR", "SHL", "SHR",
)

# Larger binds tighter.
BINARY_PRECEDENCE: Dict[str, int] = {
    "OR": 1,
    "AND": 2,
    "EQ": 3,
    "NE": 3,
    "LT": 4,
    "GT": 4,
    "LE": 4,
    "GE": 4,
    "ADD": 5,
    "SUB": 5,
    "MUL": 6,
    "DIV": 6,
    "MOD": 6,
    "BITAND": 7,
    "BITOR": 7,
    "BITXOR": 7,
    "SHL": 8,
    "SHR": 8,
}

UNARY_OPERATORS: Dict[str, str] = {
    "SUB": "NEG",
    "NOT": "NOT",
    "BITNOT": "BITNOT",
}

OPERATOR_WORDS: Dict[str, str] = {
    "ADD": "add",
    "SUB": "sip",
    "MUL": "brewop",
    "DIV": "pourop",
    "MOD": "grounds",
    "EQ": "same_blend",
    "NE": "different_blend",
    "GT": "more_caffeine",
    "LT": "less_caffeine",
    "GE": "not_weaker",
    "LE": "not_stronger",
    "AND": "with",
    "OR": "or",
    "BITAND": "blend_with",
    "BITOR": "top_with",
    "BITXOR": "spice",
    "SHL": "double_shot",
    "SHR": "half_caf",
    "NEG": "sip",
    "NOT": "no_foam",
    "BITNOT": "invert",
}


# ---- expressions ----

@dataclass
class NumberLiteral(Expression):
    value: float


@dataclass
class StringLiteral(Expression):
    value: str


@dataclass
class BooleanLiteral(Expression):
    value: bool


@dataclass
class Identifier(Expression):
    name: str


@dataclass
class ArrayLiteral(Expression):
    elements: List[Expression]


@dataclass
class ObjectLiteral(Expression):
    fields: List[Tuple[str, Expression]]


@dataclass
class BinaryOp(Expression):
    left: Expression
    op: str
    right: Expression


@dataclass
class UnaryOp(Expression):
    op: str
    operand: Expression


@dataclass
class Assignment(Expression):
    target: Expression
    value: Expression


@dataclass
class Call(Expression):
    callee: Expression
    args: List[Expression]


@dataclass
class MemberAccess(Expression):
    obj: Expression
    member: str


@dataclass
class IndexAccess(Expression):
    array: Expression
    index: Expression


@dataclass
class NewBean(Expression):
    class_name: str
    args: List[Expression]


@dataclass
class Grind(Expression):
    path: str


@dataclass
class ThisExpr(Expression):
    pass


@dataclass
class SuperExpr(Expression):
    pass


# ---- declarations ----

@dataclass
class Param:
    name: str
    type_name: str = "Any"


@dataclass
class FieldDecl:
    name: str
    value: Expression


@dataclass
class MethodSignature:
    name: str
    params: List[Param]
    return_type: str = "Any"


# ---- statements ----

@dataclass
class VarDecl(Statement):
    name: str
    type_annotation: Optional[str]
    value: Expression


@dataclass
class ArrayDecl(Statement):
    name: str
    elements: List[Expression]


@dataclass
class ObjectDecl(Statement):
    name: str
    fields: List[Tuple[str, Expression]]


@dataclass
class Print(Statement):
    expression: Expression


@dataclass
class If(Statement):
    condition: Expression
    then_branch: List[Statement]
    else_branch: List[Statement] = field(default_factory=list)


@dataclass
class While(Statement):
    condition: Expression
    body: List[Statement]


@dataclass
class For(Statement):
    init: Optional[Statement]
    condition: Expression
    increment: Optional[Expression]
    body: List[Statement]


@dataclass
class Foreach(Statement):
    variable: str
    iterable: Expression
    body: List[Statement]


@dataclass
class RoastArm:
    case: Expression
    body: List[Statement]


@dataclass
class Roast(Statement):
    subject: Expression
    arms: List[RoastArm]
    default: List[Statement]


@dataclass
class BrewDecl(Statement):
    name: str
    params: List[Param]
    body: List[Statement]
    return_type: Optional[str] = None


@dataclass
class BeanDecl(Statement):
    name: str
    parent: Optional[str]
    fields: List[FieldDecl]
    methods: List[BrewDecl]

    def find_method(self, name: str) -> Optional[BrewDecl]:
        for method in self.methods:
            if method.name == name:
                return method
        return None


@dataclass
class RecipeDecl(Statement):
    name: str
    methods: List[MethodSignature]


@dataclass
class BrewTime(Statement):
    duration: Expression


@dataclass
class Return(Statement):
    value: Optional[Expression]


@dataclass
class Break(Statement):
    pass


@dataclass
class Continue(Statement):
    pass


@dataclass
class ExpressionStatement(Statement):
    expression: Expression


@dataclass
class TryCatch(Statement):
    try_branch: List[Statement]
    error_variable: Optional[str]
    catch_branch: List[Statement]
