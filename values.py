"""Runtime values.

Arrays and objects behave as values, not references: reading a variable hands
back a deep copy, so two names never share a container.
"""

from __future__ import annotations
import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from syntax import BeanDecl, Param, Statement


TYPE_NUMBER = "Number"
TYPE_STRING = "String"
TYPE_BOOLEAN = "Boolean"
TYPE_ARRAY = "Array"
TYPE_OBJECT = "Object"
TYPE_BEAN = "Bean"
TYPE_FUNCTION = "Function"
TYPE_BOUND_METHOD = "BoundMethod"
TYPE_NULL = "Null"

LIKE_KINDS = (TYPE_NUMBER, TYPE_STRING, TYPE_BOOLEAN)


@dataclass
class Value:
    type: str
    value: Any


@dataclass
class BeanInstance:
    class_name: str
    fields: Dict[str, Value]


@dataclass
class Function:
    name: str
    params: List[Param]
    body: List[Statement]
    return_type: Optional[str]


@dataclass
class BoundMethod:
    receiver: BeanInstance
    method: Function


def number(value: float) -> Value:
    return Value(TYPE_NUMBER, float(value))


def string(value: str) -> Value:
    return Value(TYPE_STRING, value)


def boolean(value: bool) -> Value:
    return Value(TYPE_BOOLEAN, bool(value))


def array(items: List[Value]) -> Value:
    return Value(TYPE_ARRAY, items)


def instance(class_name: str, fields: Dict[str, Value]) -> Value:
    return Value(TYPE_OBJECT, BeanInstance(class_name=class_name, fields=fields))


def null() -> Value:
    return Value(TYPE_NULL, None)


def copy_instance(obj: BeanInstance) -> BeanInstance:
    return BeanInstance(
        class_name=obj.class_name,
        fields={name: copy_value(field) for name, field in obj.fields.items()},
    )


def copy_value(value: Value) -> Value:
    # Declarations and function bodies are immutable trees and may be shared.
    if value.type == TYPE_ARRAY:
        return Value(TYPE_ARRAY, [copy_value(item) for item in value.value])
    if value.type == TYPE_OBJECT:
        return Value(TYPE_OBJECT, copy_instance(value.value))
    if value.type == TYPE_BOUND_METHOD:
        bound: BoundMethod = value.value
        return Value(TYPE_BOUND_METHOD, BoundMethod(receiver=copy_instance(bound.receiver), method=bound.method))
    return Value(value.type, value.value)


def format_number(x: float) -> str:
    if math.isnan(x):
        return "NaN"
    if math.isinf(x):
        return "inf" if x > 0 else "-inf"
    if x.is_integer():
        return str(int(x))
    return repr(x)


def display(value: Value) -> str:
    kind = value.type
    if kind == TYPE_NUMBER:
        return format_number(value.value)
    if kind == TYPE_STRING:
        return value.value
    if kind == TYPE_BOOLEAN:
        return "true" if value.value else "false"
    if kind == TYPE_ARRAY:
        return "[" + ", ".join(display_nested(item) for item in value.value) + "]"
    if kind == TYPE_OBJECT:
        return f"Object({value.value.class_name})"
    if kind == TYPE_BEAN:
        decl: BeanDecl = value.value
        return f"Bean({decl.name})"
    if kind == TYPE_FUNCTION:
        return f"Function({value.value.name})"
    if kind == TYPE_BOUND_METHOD:
        return f"BoundMethod({value.value.method.name})"
    return "null"


def display_nested(value: Value) -> str:
    if value.type == TYPE_STRING:
        return f'"{value.value}"'
    return display(value)


def truthy(value: Value) -> bool:
    if value.type == TYPE_NULL:
        return False
    if value.type == TYPE_BOOLEAN:
        return bool(value.value)
    if value.type == TYPE_NUMBER:
        return value.value != 0.0
    return True


def like_kind_equal(left: Value, right: Value) -> bool:
    """Equality used by roast arms: only Number, String and Boolean of the same kind match."""
    if left.type != right.type or left.type not in LIKE_KINDS:
        return False
    return left.value == right.value
