from __future__ import annotations
import json
import math
import os
import sys
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set, Tuple, Union

import numpy as np

from lexer import BrewcoError
from natives import NativeError, Natives
from parser import parse
from syntax import (
    ArrayDecl,
    ArrayLiteral,
    Assignment,
    BeanDecl,
    BinaryOp,
    BooleanLiteral,
    Break,
    BrewDecl,
    BrewTime,
    Call,
    Continue,
    Expression,
    ExpressionStatement,
    For,
    Foreach,
    Grind,
    Identifier,
    If,
    IndexAccess,
    MemberAccess,
    NewBean,
    NumberLiteral,
    ObjectDecl,
    ObjectLiteral,
    Print,
    RecipeDecl,
    Return,
    Roast,
    SourceLocation,
    Statement,
    StringLiteral,
    SuperExpr,
    ThisExpr,
    TryCatch,
    UnaryOp,
    VarDecl,
    While,
)
from values import (
    TYPE_ARRAY,
    TYPE_BEAN,
    TYPE_BOOLEAN,
    TYPE_BOUND_METHOD,
    TYPE_FUNCTION,
    TYPE_NULL,
    TYPE_NUMBER,
    TYPE_OBJECT,
    TYPE_STRING,
    BoundMethod,
    Function,
    Value,
    array,
    boolean,
    copy_instance,
    copy_value,
    display,
    format_number,
    instance,
    like_kind_equal,
    null,
    number,
    string,
    truthy,
)


INT32_MIN = -(2 ** 31)
INT32_MAX = 2 ** 31 - 1

MAX_BREW_DEPTH = 1000
# Each Brewco call nests a handful of evaluator frames per expression level.
HOST_RECURSION_LIMIT = MAX_BREW_DEPTH * 40

CONSTRUCTOR_NAME = "init"
MODULE_CLASS_NAME = "Module"

NUMERIC_COMPARISONS: Dict[str, Callable[[float, float], bool]] = {
    "EQ": lambda a, b: a == b,
    "NE": lambda a, b: a != b,
    "GT": lambda a, b: a > b,
    "LT": lambda a, b: a < b,
    "GE": lambda a, b: a >= b,
    "LE": lambda a, b: a <= b,
}

BITWISE_OPERATORS: Dict[str, Callable[[np.int32, np.int32], Any]] = {
    "BITAND": np.bitwise_and,
    "BITOR": np.bitwise_or,
    "BITXOR": np.bitwise_xor,
    "SHL": lambda a, b: np.left_shift(a, np.int32(int(b) & 31)),
    "SHR": lambda a, b: np.right_shift(a, np.int32(int(b) & 31)),
}


class BrewcoRuntimeError(BrewcoError):
    """Raised when a runtime error reaches the top level uncaught."""

    def __init__(
        self,
        message: str,
        *,
        location: Optional[SourceLocation] = None,
        frames: Optional[List["TracebackFrame"]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.location = location
        self.frames: List[TracebackFrame] = frames or []
        self.step_index: Optional[int] = None


# ---- control-flow outcomes ----

@dataclass
class ReturnSignal:
    value: Value


@dataclass
class BreakSignal:
    location: SourceLocation


@dataclass
class ContinueSignal:
    location: SourceLocation


@dataclass
class ErrorSignal:
    message: str
    location: Optional[SourceLocation]
    frames: List["TracebackFrame"] = field(default_factory=list)


Signal = Union[ReturnSignal, BreakSignal, ContinueSignal, ErrorSignal]
Outcome = Union[Value, Signal]


@dataclass
class Frame:
    name: str
    frame_id: str
    call_location: Optional[SourceLocation]


@dataclass
class StateEntry:
    step_index: int
    state_id: str
    frame_id: Optional[str]
    rule: str
    source_location: Optional[SourceLocation]
    statement: Optional[str]
    env_snapshot: Optional[Dict[str, str]]


class StateLogger:
    """Tracks the most recent step overall and per live frame."""

    def __init__(self, verbose: bool) -> None:
        self.verbose = verbose
        self.last_entry: Optional[StateEntry] = None
        self.next_state_index = 0
        self.frame_last_entry: Dict[str, StateEntry] = {}

    def record(
        self,
        *,
        frame: Optional[Frame],
        rule: str,
        location: Optional[SourceLocation],
        statement: Optional[str],
        env_snapshot: Optional[Dict[str, str]] = None,
    ) -> StateEntry:
        step_index = self.next_state_index
        entry = StateEntry(
            step_index=step_index,
            state_id=f"s_{step_index:06d}",
            frame_id=frame.frame_id if frame else None,
            rule=rule,
            source_location=location,
            statement=statement,
            env_snapshot=env_snapshot,
        )
        self.last_entry = entry
        if frame:
            self.frame_last_entry[frame.frame_id] = entry
        self.next_state_index += 1
        return entry

    def last_entry_for_frame(self, frame_id: str) -> Optional[StateEntry]:
        return self.frame_last_entry.get(frame_id)

    def release_frame(self, frame_id: str) -> None:
        self.frame_last_entry.pop(frame_id, None)


@dataclass
class TracebackFrame:
    name: str
    location: Optional[SourceLocation]
    statement: Optional[str]
    state_entry: Optional[StateEntry]


def _to_int32(x: float) -> np.int32:
    if math.isnan(x):
        return np.int32(0)
    return np.int32(int(min(max(x, INT32_MIN), INT32_MAX)))


def _is_signal(outcome: Any) -> bool:
    return not isinstance(outcome, Value)


def _is_valid_index(index: float, length: int) -> bool:
    return 0 <= index < length and float(index).is_integer()


class Interpreter:
    def __init__(
        self,
        *,
        filename: str = "<string>",
        verbose: bool = False,
        input_provider: Optional[Callable[[str], str]] = None,
        output_sink: Optional[Callable[[str], None]] = None,
        diagnostic_sink: Optional[Callable[[str], None]] = None,
        sleep: Optional[Callable[[float], None]] = None,
        natives: Optional[Natives] = None,
        loading_modules: Optional[Set[str]] = None,
    ) -> None:
        self.filename = filename if filename.startswith("<") else os.path.abspath(filename)
        self.verbose = verbose
        self.input_provider = input_provider or input
        self.output_sink = output_sink or (lambda text: print(text))
        self.diagnostic_sink = diagnostic_sink or (lambda text: print(text, file=sys.stderr))
        self.sleep = sleep or time.sleep
        self.natives = natives or Natives()
        # Shared with nested module interpreters so import cycles are visible.
        self.loading_modules: Set[str] = loading_modules if loading_modules is not None else set()

        self.scopes: List[Dict[str, Value]] = [{}]
        self.classes: Dict[str, BeanDecl] = {}
        self.recipes: Dict[str, RecipeDecl] = {}
        self.warnings: List[str] = []
        self.logger = StateLogger(verbose=verbose)
        self.logger.record(frame=None, rule="SEED", location=None, statement="<seed>")
        self.call_stack: List[Frame] = []
        self.frame_counter = 0

    # ---- entry point ----

    def run(self, statements: List[Statement]) -> None:
        if sys.getrecursionlimit() < HOST_RECURSION_LIMIT:
            sys.setrecursionlimit(HOST_RECURSION_LIMIT)
        top_level = self._new_frame("<top-level>", None)
        self.call_stack = [top_level]
        entry_file = None if self.filename.startswith("<") else self.filename
        if entry_file is not None:
            self.loading_modules.add(entry_file)
        try:
            self._register_declarations(statements)
            for statement in statements:
                if isinstance(statement, (BeanDecl, RecipeDecl)):
                    continue
                signal = self._execute(statement)
                if signal is None:
                    continue
                if isinstance(signal, ReturnSignal):
                    break
                if isinstance(signal, BreakSignal):
                    signal = self._error("'break' used outside of a loop", signal.location)
                elif isinstance(signal, ContinueSignal):
                    signal = self._error("'continue' used outside of a loop", signal.location)
                raise self._runtime_error(signal)
        except BrewcoRuntimeError:
            raise
        except RecursionError:
            del self.scopes[1:]
            raise self._internal_error("Maximum brewing depth exceeded: too much recursion")
        except Exception as exc:
            # Convert unexpected Python-level exceptions so callers can format them as tracebacks.
            del self.scopes[1:]
            raise self._internal_error(f"Internal interpreter error: {exc}")
        finally:
            if entry_file is not None:
                self.loading_modules.discard(entry_file)
            self.logger.release_frame(top_level.frame_id)
            self.call_stack = []

    def bindings(self) -> Dict[str, str]:
        return {name: display(value) for name, value in self.scopes[0].items()}

    def _register_declarations(self, statements: List[Statement]) -> None:
        beans: List[BeanDecl] = []
        for statement in statements:
            if isinstance(statement, BeanDecl):
                self.classes[statement.name] = statement
                beans.append(statement)
            elif isinstance(statement, RecipeDecl):
                self.recipes[statement.name] = statement
        for bean in beans:
            self._check_recipe(bean)

    def _check_recipe(self, bean: BeanDecl) -> None:
        if bean.parent is None:
            return
        recipe = self.recipes.get(bean.parent)
        if recipe is None:
            return
        for signature in recipe.methods:
            if bean.find_method(signature.name) is None:
                self._warn(
                    f"Bean '{bean.name}' does not implement required method '{signature.name}' "
                    f"from recipe '{bean.parent}'"
                )

    def _warn(self, message: str) -> None:
        self.warnings.append(message)
        self.diagnostic_sink(message)

    # ---- scopes ----

    def _define(self, name: str, value: Value) -> None:
        self.scopes[-1][name] = value

    def _find_scope(self, name: str) -> Optional[Dict[str, Value]]:
        for scope in reversed(self.scopes):
            if name in scope:
                return scope
        return None

    def _lookup(self, name: str) -> Optional[Value]:
        scope = self._find_scope(name)
        if scope is None:
            return None
        return copy_value(scope[name])

    def _assign(self, name: str, value: Value) -> bool:
        scope = self._find_scope(name)
        if scope is None:
            return False
        scope[name] = value
        return True

    # ---- statements ----

    def _execute_block(self, statements: List[Statement]) -> Optional[Signal]:
        for statement in statements:
            signal = self._execute(statement)
            if signal is not None:
                return signal
        return None

    def _execute(self, statement: Statement) -> Optional[Signal]:
        self._log_step(rule=statement.__class__.__name__, location=statement.location)
        if isinstance(statement, VarDecl):
            value = self._evaluate(statement.value)
            if _is_signal(value):
                return value
            self._define(statement.name, value)
            return None
        if isinstance(statement, ArrayDecl):
            items = self._evaluate_all(statement.elements)
            if not isinstance(items, list):
                return items
            self._define(statement.name, array(items))
            return None
        if isinstance(statement, ObjectDecl):
            fields = self._evaluate_fields(statement.fields)
            if not isinstance(fields, dict):
                return fields
            self._define(statement.name, instance(statement.name, fields))
            return None
        if isinstance(statement, Print):
            value = self._evaluate(statement.expression)
            if _is_signal(value):
                return value
            if value.type == TYPE_ARRAY:
                self.output_sink("".join(display(item) for item in value.value))
            else:
                self.output_sink(display(value))
            return None
        if isinstance(statement, ExpressionStatement):
            value = self._evaluate(statement.expression)
            return value if _is_signal(value) else None
        if isinstance(statement, If):
            condition = self._evaluate(statement.condition)
            if _is_signal(condition):
                return condition
            if self._is_true(condition):
                return self._execute_block(statement.then_branch)
            return self._execute_block(statement.else_branch)
        if isinstance(statement, While):
            return self._execute_while(statement)
        if isinstance(statement, For):
            return self._execute_for(statement)
        if isinstance(statement, Foreach):
            return self._execute_foreach(statement)
        if isinstance(statement, Roast):
            return self._execute_roast(statement)
        if isinstance(statement, TryCatch):
            return self._execute_try(statement)
        if isinstance(statement, BrewDecl):
            self._define(statement.name, Value(TYPE_FUNCTION, self._function_from(statement)))
            return None
        if isinstance(statement, BeanDecl):
            self.classes[statement.name] = statement
            self._check_recipe(statement)
            return None
        if isinstance(statement, RecipeDecl):
            self.recipes[statement.name] = statement
            return None
        if isinstance(statement, BrewTime):
            duration = self._evaluate(statement.duration)
            if _is_signal(duration):
                return duration
            seconds = 1
            if duration.type == TYPE_NUMBER and 0 < duration.value < math.inf:
                seconds = int(duration.value)
            self.sleep(seconds)
            return None
        if isinstance(statement, Return):
            if statement.value is None:
                return ReturnSignal(null())
            value = self._evaluate(statement.value)
            if _is_signal(value):
                return value
            return ReturnSignal(value)
        if isinstance(statement, Break):
            return BreakSignal(statement.location)
        if isinstance(statement, Continue):
            return ContinueSignal(statement.location)
        return self._error(f"Unsupported statement {statement.__class__.__name__}", statement.location)

    def _is_true(self, value: Value) -> bool:
        # Conditions only take a branch on a genuine Boolean true.
        return value.type == TYPE_BOOLEAN and value.value is True

    def _execute_while(self, statement: While) -> Optional[Signal]:
        while True:
            condition = self._evaluate(statement.condition)
            if _is_signal(condition):
                return condition
            if not self._is_true(condition):
                return None
            signal = self._execute_block(statement.body)
            if isinstance(signal, BreakSignal):
                return None
            if isinstance(signal, ContinueSignal):
                continue
            if signal is not None:
                return signal

    def _execute_for(self, statement: For) -> Optional[Signal]:
        self.scopes.append({})
        try:
            if statement.init is not None:
                signal = self._execute(statement.init)
                if signal is not None:
                    return signal
            while True:
                condition = self._evaluate(statement.condition)
                if _is_signal(condition):
                    return condition
                if not self._is_true(condition):
                    return None
                signal = self._execute_block(statement.body)
                if isinstance(signal, BreakSignal):
                    return None
                if signal is not None and not isinstance(signal, ContinueSignal):
                    return signal
                if statement.increment is not None:
                    step = self._evaluate(statement.increment)
                    if _is_signal(step):
                        return step
        finally:
            self.scopes.pop()

    def _execute_foreach(self, statement: Foreach) -> Optional[Signal]:
        iterable = self._evaluate(statement.iterable)
        if _is_signal(iterable):
            return iterable
        if iterable.type != TYPE_ARRAY:
            return self._error(
                "Can't foreach over non-cup values! Only arrays (cups) are iterable. Shake it off and try again!",
                statement.location,
            )
        for item in iterable.value:
            self.scopes.append({statement.variable: item})
            try:
                signal = self._execute_block(statement.body)
            finally:
                self.scopes.pop()
            if isinstance(signal, BreakSignal):
                return None
            if isinstance(signal, ContinueSignal):
                continue
            if signal is not None:
                return signal
        return None

    def _execute_roast(self, statement: Roast) -> Optional[Signal]:
        subject = self._evaluate(statement.subject)
        if _is_signal(subject):
            return subject
        for arm in statement.arms:
            case = self._evaluate(arm.case)
            if _is_signal(case):
                return case
            if like_kind_equal(subject, case):
                return self._execute_block(arm.body)
        return self._execute_block(statement.default)

    def _execute_try(self, statement: TryCatch) -> Optional[Signal]:
        # Only runtime errors are caught; return/break/continue pass through.
        signal = self._execute_block(statement.try_branch)
        if not isinstance(signal, ErrorSignal):
            return signal
        self.scopes.append({})
        try:
            if statement.error_variable is not None:
                self._define(statement.error_variable, string(signal.message))
            return self._execute_block(statement.catch_branch)
        finally:
            self.scopes.pop()

    # ---- expressions ----

    def _evaluate_all(self, expressions: List[Expression]) -> Union[List[Value], Signal]:
        values: List[Value] = []
        for expression in expressions:
            value = self._evaluate(expression)
            if _is_signal(value):
                return value
            values.append(value)
        return values

    def _evaluate_fields(self, fields: List[Tuple[str, Expression]]) -> Union[Dict[str, Value], Signal]:
        result: Dict[str, Value] = {}
        for name, expression in fields:
            value = self._evaluate(expression)
            if _is_signal(value):
                return value
            result[name] = value
        return result

    def _evaluate(self, expression: Expression) -> Outcome:
        if isinstance(expression, NumberLiteral):
            return number(expression.value)
        if isinstance(expression, StringLiteral):
            return string(expression.value)
        if isinstance(expression, BooleanLiteral):
            return boolean(expression.value)
        if isinstance(expression, Identifier):
            value = self._lookup(expression.name)
            if value is not None:
                return value
            decl = self.classes.get(expression.name)
            if decl is not None:
                return Value(TYPE_BEAN, decl)
            return self._error(f"Variable {expression.name} not found", expression.location)
        if isinstance(expression, ArrayLiteral):
            items = self._evaluate_all(expression.elements)
            if not isinstance(items, list):
                return items
            return array(items)
        if isinstance(expression, ObjectLiteral):
            fields = self._evaluate_fields(expression.fields)
            if not isinstance(fields, dict):
                return fields
            return instance("", fields)
        if isinstance(expression, BinaryOp):
            return self._evaluate_binary(expression)
        if isinstance(expression, UnaryOp):
            return self._evaluate_unary(expression)
        if isinstance(expression, Assignment):
            return self._evaluate_assignment(expression)
        if isinstance(expression, Call):
            return self._evaluate_call(expression)
        if isinstance(expression, MemberAccess):
            return self._evaluate_member(expression)
        if isinstance(expression, IndexAccess):
            return self._evaluate_index(expression)
        if isinstance(expression, NewBean):
            return self._evaluate_new(expression)
        if isinstance(expression, Grind):
            return self._evaluate_grind(expression)
        if isinstance(expression, ThisExpr):
            value = self._lookup("this")
            if value is None:
                return self._error("Cannot use 'this' outside of a bean", expression.location)
            return value
        if isinstance(expression, SuperExpr):
            value = self._lookup("super")
            if value is None:
                return self._error("Cannot use 'super' outside of a bean", expression.location)
            return value
        return self._error(f"Unsupported expression {expression.__class__.__name__}", expression.location)

    def _evaluate_binary(self, expression: BinaryOp) -> Outcome:
        op = expression.op
        left = self._evaluate(expression.left)
        if _is_signal(left):
            return left
        if op == "AND" and not truthy(left):
            return boolean(False)
        if op == "OR" and truthy(left):
            return boolean(True)
        right = self._evaluate(expression.right)
        if _is_signal(right):
            return right
        if op in ("AND", "OR"):
            return boolean(truthy(right))
        return self._binary(op, left, right, expression.location)

    def _binary(self, op: str, left: Value, right: Value, location: SourceLocation) -> Outcome:
        lt, rt = left.type, right.type
        if lt == TYPE_NUMBER and rt == TYPE_NUMBER:
            return self._numeric(op, left.value, right.value, location)
        if lt == TYPE_STRING and rt == TYPE_STRING:
            if op == "ADD":
                return string(left.value + right.value)
            if op in ("EQ", "NE"):
                return boolean((left.value == right.value) == (op == "EQ"))
            return self._error("Invalid operation on strings", location)
        if lt == TYPE_STRING and rt == TYPE_NUMBER:
            if op == "ADD":
                return string(left.value + format_number(right.value))
            return self._error("Invalid operation on string and number", location)
        if lt == TYPE_NUMBER and rt == TYPE_STRING:
            if op == "ADD":
                return string(format_number(left.value) + right.value)
            return self._error("Invalid operation on number and string", location)
        if op in ("EQ", "NE") and lt == rt and lt in (TYPE_BOOLEAN, TYPE_NULL):
            return boolean((left.value == right.value) == (op == "EQ"))
        return self._error("Mismatched types in binary operation", location)

    def _numeric(self, op: str, a: float, b: float, location: SourceLocation) -> Outcome:
        if op == "ADD":
            return number(a + b)
        if op == "SUB":
            return number(a - b)
        if op == "MUL":
            return number(a * b)
        if op == "DIV":
            if b == 0:
                return self._error("Division by zero!", location)
            return number(a / b)
        if op == "MOD":
            if b == 0:
                return self._error("Modulo by zero!", location)
            with np.errstate(all="ignore"):
                return number(float(np.fmod(a, b)))
        comparison = NUMERIC_COMPARISONS.get(op)
        if comparison is not None:
            return boolean(comparison(a, b))
        bitwise = BITWISE_OPERATORS.get(op)
        if bitwise is not None:
            return number(float(bitwise(_to_int32(a), _to_int32(b))))
        return self._error(f"Unknown operator {op}", location)

    def _evaluate_unary(self, expression: UnaryOp) -> Outcome:
        operand = self._evaluate(expression.operand)
        if _is_signal(operand):
            return operand
        if expression.op == "NOT":
            return boolean(not truthy(operand))
        if operand.type != TYPE_NUMBER:
            return self._error("Operand must be a number", expression.location)
        if expression.op == "NEG":
            return number(-operand.value)
        return number(float(np.invert(_to_int32(operand.value))))

    def _evaluate_assignment(self, expression: Assignment) -> Outcome:
        value = self._evaluate(expression.value)
        if _is_signal(value):
            return value
        failure = self._store(expression.target, copy_value(value), expression.location)
        if failure is not None:
            return failure
        return value

    def _store(self, target: Expression, value: Value, location: SourceLocation) -> Optional[Signal]:
        # Containers are copies, so a nested target is updated and written back through its base.
        if isinstance(target, Identifier):
            if not self._assign(target.name, value):
                return self._error(f"Variable '{target.name}' not declared.", location)
            return None
        if isinstance(target, ThisExpr):
            if not self._assign("this", value):
                return self._error("Cannot use 'this' outside of a bean", location)
            return None
        if isinstance(target, MemberAccess):
            base = self._evaluate(target.obj)
            if _is_signal(base):
                return base
            if base.type != TYPE_OBJECT:
                return self._error("Member access on a non-object.", location)
            base.value.fields[target.member] = value
            return self._store(target.obj, base, location)
        if isinstance(target, IndexAccess):
            base = self._evaluate(target.array)
            if _is_signal(base):
                return base
            index = self._evaluate(target.index)
            if _is_signal(index):
                return index
            if base.type != TYPE_ARRAY or index.type != TYPE_NUMBER:
                return self._error("Invalid array assignment", location)
            if not _is_valid_index(index.value, len(base.value)):
                return self._error("Array index out of bounds", location)
            base.value[int(index.value)] = value
            return self._store(target.array, base, location)
        return self._error("Invalid assignment target.", location)

    def _evaluate_call(self, expression: Call) -> Outcome:
        callee = expression.callee
        # Natives are consulted only when the name is not bound by the program.
        if isinstance(callee, Identifier) and self._find_scope(callee.name) is None and self.natives.has(callee.name):
            args = self._evaluate_all(expression.args)
            if not isinstance(args, list):
                return args
            try:
                return self.natives.invoke(self, callee.name, args, expression.location)
            except NativeError as exc:
                return self._error(str(exc), expression.location)

        target = self._evaluate(callee)
        if _is_signal(target):
            return target
        args = self._evaluate_all(expression.args)
        if not isinstance(args, list):
            return args
        if target.type == TYPE_FUNCTION:
            result, _ = self._invoke(target.value, args, None, expression.location)
            return result
        if target.type == TYPE_BOUND_METHOD:
            bound: BoundMethod = target.value
            receiver = Value(TYPE_OBJECT, copy_instance(bound.receiver))
            result, _ = self._invoke(bound.method, args, receiver, expression.location)
            return result
        if target.type == TYPE_OBJECT:
            return self._error("This object is not a function.", expression.location)
        return self._error("This is not a function you can call!", expression.location)

    def _invoke(
        self,
        function: Function,
        args: List[Value],
        this: Optional[Value],
        call_location: SourceLocation,
    ) -> Tuple[Outcome, Optional[Value]]:
        """Run a function body in a fresh scope pushed over the caller's scopes.

        Parameters are bound positionally; surplus arguments are dropped and
        missing ones stay unbound. Returns the call's outcome together with the
        final value of ``this`` so constructors can pick up a reassigned instance.
        """
        if len(self.call_stack) > MAX_BREW_DEPTH:
            return self._error("Maximum brewing depth exceeded: too much recursion", call_location), None
        frame = self._new_frame(function.name, call_location)
        self.call_stack.append(frame)
        self.scopes.append({})
        try:
            if this is not None:
                self._define("this", this)
            for param, arg in zip(function.params, args):
                self._define(param.name, arg)
            signal = self._execute_block(function.body)
            final_this = self.scopes[-1].get("this")
            if signal is None:
                return null(), final_this
            if isinstance(signal, ReturnSignal):
                return signal.value, final_this
            if isinstance(signal, BreakSignal):
                return self._error("'break' used outside of a loop", signal.location), None
            if isinstance(signal, ContinueSignal):
                return self._error("'continue' used outside of a loop", signal.location), None
            return signal, None
        finally:
            self.scopes.pop()
            self.call_stack.pop()
            self.logger.release_frame(frame.frame_id)

    def _function_from(self, decl: BrewDecl) -> Function:
        return Function(name=decl.name, params=decl.params, body=decl.body, return_type=decl.return_type)

    def _evaluate_member(self, expression: MemberAccess) -> Outcome:
        target = self._evaluate(expression.obj)
        if _is_signal(target):
            return target
        if target.type != TYPE_OBJECT:
            return self._error("Member access is only valid on objects", expression.location)
        obj = target.value
        if expression.member in obj.fields:
            return obj.fields[expression.member]
        # Methods resolve through the class tag carried by the instance.
        decl = self.classes.get(obj.class_name)
        method = decl.find_method(expression.member) if decl is not None else None
        if method is not None:
            return Value(TYPE_BOUND_METHOD, BoundMethod(receiver=obj, method=self._function_from(method)))
        return self._error(f"Member '{expression.member}' not found on object", expression.location)

    def _evaluate_index(self, expression: IndexAccess) -> Outcome:
        target = self._evaluate(expression.array)
        if _is_signal(target):
            return target
        index = self._evaluate(expression.index)
        if _is_signal(index):
            return index
        if target.type != TYPE_ARRAY or index.type != TYPE_NUMBER:
            return self._error("Array access on non-array type or with non-numeric index", expression.location)
        if not _is_valid_index(index.value, len(target.value)):
            return self._error("Array index out of bounds", expression.location)
        return target.value[int(index.value)]

    def _evaluate_new(self, expression: NewBean) -> Outcome:
        decl = self.classes.get(expression.class_name)
        if decl is None:
            return self._error(f"Bean {expression.class_name} not found", expression.location)
        fields: Dict[str, Value] = {}
        for field_decl in decl.fields:
            value = self._evaluate(field_decl.value)
            if _is_signal(value):
                return value
            fields[field_decl.name] = value
        created = instance(decl.name, fields)
        constructor = decl.find_method(CONSTRUCTOR_NAME)
        if constructor is None:
            return created
        args = self._evaluate_all(expression.args)
        if not isinstance(args, list):
            return args
        result, final_this = self._invoke(self._function_from(constructor), args, created, expression.location)
        if _is_signal(result):
            return result
        return final_this if final_this is not None else created

    def _evaluate_grind(self, expression: Grind) -> Outcome:
        path = self._resolve_module_path(expression.path)
        if path in self.loading_modules:
            return self._error(f"Cannot grind '{expression.path}': import cycle detected", expression.location)
        try:
            with open(path, "r", encoding="utf-8") as handle:
                source = handle.read()
        except OSError as exc:
            return self._error(f"Could not read module file '{expression.path}': {exc}", expression.location)
        result = parse(source, path)
        if result.diagnostics:
            return self._error(f"Errors parsing module '{expression.path}': {result.errors}", expression.location)
        module = Interpreter(
            filename=path,
            verbose=self.verbose,
            input_provider=self.input_provider,
            output_sink=self.output_sink,
            diagnostic_sink=self.diagnostic_sink,
            sleep=self.sleep,
            natives=self.natives,
            loading_modules=self.loading_modules,
        )
        try:
            module.run(result.statements)
        except BrewcoRuntimeError as exc:
            return self._error(f"Error in module '{expression.path}': {exc.message}", expression.location)
        exports = {name: copy_value(value) for name, value in module.scopes[0].items()}
        return instance(MODULE_CLASS_NAME, exports)

    def _resolve_module_path(self, path: str) -> str:
        if os.path.isabs(path):
            return os.path.normpath(path)
        base = os.getcwd() if self.filename.startswith("<") else os.path.dirname(self.filename)
        return os.path.abspath(os.path.join(base, path))

    # ---- errors and logging ----

    def _error(self, message: str, location: Optional[SourceLocation]) -> ErrorSignal:
        return ErrorSignal(message=message, location=location, frames=self._capture_frames())

    def _capture_frames(self) -> List[TracebackFrame]:
        frames: List[TracebackFrame] = []
        for frame in self.call_stack:
            entry = self.logger.last_entry_for_frame(frame.frame_id)
            location = entry.source_location if entry else frame.call_location
            frames.append(
                TracebackFrame(
                    name=frame.name,
                    location=location,
                    statement=entry.statement if entry else None,
                    state_entry=entry,
                )
            )
        return frames

    def _runtime_error(self, signal: ErrorSignal) -> BrewcoRuntimeError:
        error = BrewcoRuntimeError(signal.message, location=signal.location, frames=signal.frames)
        if self.logger.last_entry is not None:
            error.step_index = self.logger.last_entry.step_index
        return error

    def _internal_error(self, message: str) -> BrewcoRuntimeError:
        location = None
        if self.logger.last_entry is not None:
            location = self.logger.last_entry.source_location
        return self._runtime_error(ErrorSignal(message=message, location=location))

    def _new_frame(self, name: str, call_location: Optional[SourceLocation]) -> Frame:
        frame_id = f"f_{self.frame_counter:04d}"
        self.frame_counter += 1
        return Frame(name=name, frame_id=frame_id, call_location=call_location)

    def _log_step(self, *, rule: str, location: Optional[SourceLocation]) -> None:
        frame = self.call_stack[-1] if self.call_stack else None
        env_snapshot = None
        if self.verbose:
            env_snapshot = {name: display(value) for name, value in self.scopes[-1].items()}
        self.logger.record(
            frame=frame,
            rule=rule,
            location=location,
            statement=location.statement if location else None,
            env_snapshot=env_snapshot,
        )


class TracebackFormatter:
    def __init__(self, interpreter: Interpreter) -> None:
        self.interpreter = interpreter

    def build_frames(self, error: BrewcoRuntimeError) -> List[TracebackFrame]:
        if error.frames:
            return error.frames
        return [TracebackFrame(name="<top-level>", location=error.location, statement=None, state_entry=None)]

    def format_text(self, error: BrewcoRuntimeError, verbose: bool) -> str:
        lines = ["Traceback (most recent call last):"]
        for frame in self.build_frames(error):
            if frame.location:
                lines.append(f"  File \"{frame.location.file}\", line {frame.location.line}, in {frame.name}")
                if frame.statement or frame.location.statement:
                    lines.append(f"    {frame.statement or frame.location.statement}")
            else:
                lines.append(f"  <unknown location> in {frame.name}")
            if frame.state_entry:
                lines.append(
                    f"    State log index: {frame.state_entry.step_index}  State id: {frame.state_entry.state_id}"
                )
                if verbose and frame.state_entry.env_snapshot is not None:
                    snapshot = ", ".join(f"{k}={v}" for k, v in frame.state_entry.env_snapshot.items())
                    lines.append(f"    Env snapshot: {snapshot}")
        lines.append(f"{error.__class__.__name__}: {error.message}")
        return "\n".join(lines)

    def to_json(self, error: BrewcoRuntimeError) -> str:
        frames_json: List[Dict[str, Any]] = []
        for index, frame in enumerate(self.build_frames(error)):
            entry: Dict[str, Any] = {"frame_index": index, "name": frame.name}
            if frame.location:
                entry["source_location"] = {
                    "file": frame.location.file,
                    "line": frame.location.line,
                    "column": frame.location.column,
                    "statement": frame.location.statement,
                }
            if frame.state_entry:
                entry["state_id"] = frame.state_entry.state_id
                entry["step_index"] = frame.state_entry.step_index
                entry["rule"] = frame.state_entry.rule
                if frame.state_entry.env_snapshot is not None:
                    entry["env_snapshot"] = frame.state_entry.env_snapshot
            frames_json.append(entry)
        data = {
            "error": {
                "type": error.__class__.__name__,
                "message": error.message,
                "failing_step_index": error.step_index,
            },
            "traceback": frames_json,
        }
        return json.dumps(data, indent=2)
