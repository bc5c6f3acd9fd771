from __future__ import annotations
from typing import Dict, List, Optional

from diagnostics import BEAN_NOT_FOUND, WRONG_BREWING_METHOD, WRONG_CUP_TYPE, Diagnostic
from syntax import (
    ArrayDecl,
    BeanDecl,
    BinaryOp,
    BooleanLiteral,
    BrewDecl,
    Expression,
    ExpressionStatement,
    Identifier,
    Node,
    NumberLiteral,
    ObjectDecl,
    Statement,
    StringLiteral,
    VarDecl,
)


NUMBER = "Number"
STRING = "String"
BOOLEAN = "Boolean"
ARRAY = "Array"
OBJECT = "Object"
FUNCTION = "Function"
BEAN = "Bean"
NULL = "Null"
ANY = "Any"

ANNOTATION_TYPES: Dict[str, str] = {
    "Number": NUMBER,
    "String": STRING,
    "Boolean": BOOLEAN,
}

ARITHMETIC_OPERATORS = {"SUB", "MUL", "DIV", "MOD"}
EQUALITY_OPERATORS = {"EQ", "NE"}
RELATIONAL_OPERATORS = {"GT", "LT", "GE", "LE"}
LOGICAL_OPERATORS = {"AND", "OR"}


class TypeChecker:
    """Shallow, best-effort static pass over top-level declarations.

    Only ``VarDecl`` and expression statements are inspected. Function, bean,
    array and object declarations just bind their names so that later
    references resolve. Every problem is collected; nothing aborts the pass.
    ``errors`` holds the plain messages and ``diagnostics`` the same problems
    as classified, positioned records.
    """

    def __init__(self) -> None:
        self.scopes: List[Dict[str, str]] = [{}]
        self.errors: List[str] = []
        self.diagnostics: List[Diagnostic] = []

    def check(self, statements: List[Statement]) -> List[str]:
        for statement in statements:
            self._check_statement(statement)
        return list(self.errors)

    def _check_statement(self, statement: Statement) -> None:
        if isinstance(statement, VarDecl):
            value_type = self._infer(statement.value)
            if statement.type_annotation is None:
                self._define(statement.name, value_type)
                return
            declared = ANNOTATION_TYPES.get(statement.type_annotation, ANY)
            if not self._compatible(declared, value_type):
                self._report(
                    WRONG_CUP_TYPE,
                    statement,
                    f"Type mismatch for '{statement.name}': expected {declared}, but got {value_type}.",
                )
            self._define(statement.name, declared)
        elif isinstance(statement, ExpressionStatement):
            self._infer(statement.expression)
        elif isinstance(statement, BrewDecl):
            self._define(statement.name, FUNCTION)
        elif isinstance(statement, BeanDecl):
            self._define(statement.name, BEAN)
        elif isinstance(statement, ArrayDecl):
            self._define(statement.name, ARRAY)
        elif isinstance(statement, ObjectDecl):
            self._define(statement.name, OBJECT)

    def _infer(self, expr: Expression) -> str:
        if isinstance(expr, NumberLiteral):
            return NUMBER
        if isinstance(expr, StringLiteral):
            return STRING
        if isinstance(expr, BooleanLiteral):
            return BOOLEAN
        if isinstance(expr, Identifier):
            found = self._lookup(expr.name)
            if found is None:
                # Any keeps one undefined name from cascading into more errors.
                self._report(BEAN_NOT_FOUND, expr, f"Variable '{expr.name}' not found.")
                return ANY
            return found
        if isinstance(expr, BinaryOp):
            return self._infer_binary(expr)
        return ANY

    def _infer_binary(self, expr: BinaryOp) -> str:
        left = self._infer(expr.left)
        right = self._infer(expr.right)
        op = expr.op
        if op == "ADD":
            if left == ANY or right == ANY:
                return ANY
            if left in (NUMBER, STRING) and right in (NUMBER, STRING):
                return STRING if STRING in (left, right) else NUMBER
            return self._operator_error(
                expr, f"The 'add' operation only supports numbers or strings, but got {left} and {right}."
            )
        if op in ARITHMETIC_OPERATORS:
            if self._all_of(NUMBER, left, right):
                return NUMBER
            return self._operator_error(expr, f"Arithmetic operation requires two numbers, but got {left} and {right}.")
        if op in EQUALITY_OPERATORS:
            if ANY in (left, right) or (left == right and left in (NUMBER, STRING, BOOLEAN)):
                return BOOLEAN
            return self._operator_error(expr, f"Cannot compare {left} and {right}. They must be of the same type.")
        if op in RELATIONAL_OPERATORS:
            if self._all_of(NUMBER, left, right):
                return BOOLEAN
            return self._operator_error(expr, f"Can only compare numbers, but got {left} and {right}.")
        if op in LOGICAL_OPERATORS:
            if self._all_of(BOOLEAN, left, right):
                return BOOLEAN
            return self._operator_error(expr, f"Logical operators require two booleans, but got {left} and {right}.")
        return ANY

    def _operator_error(self, expr: BinaryOp, message: str) -> str:
        self._report(WRONG_BREWING_METHOD, expr, message)
        return ANY

    def _report(self, kind: str, node: Node, message: str) -> None:
        self.errors.append(message)
        location = node.location
        self.diagnostics.append(
            Diagnostic.create(kind, location.line, location.column, message, context=location.statement or None)
        )

    @staticmethod
    def _all_of(expected: str, left: str, right: str) -> bool:
        return left in (expected, ANY) and right in (expected, ANY)

    @staticmethod
    def _compatible(declared: str, actual: str) -> bool:
        return declared == ANY or actual == ANY or declared == actual

    def _define(self, name: str, type_name: str) -> None:
        self.scopes[-1][name] = type_name

    def _lookup(self, name: str) -> Optional[str]:
        for scope in reversed(self.scopes):
            if name in scope:
                return scope[name]
        return None


def check(statements: List[Statement]) -> List[str]:
    return TypeChecker().check(statements)
