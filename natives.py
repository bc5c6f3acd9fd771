from __future__ import annotations
import math
import os
import sys
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Dict, List, Optional

import numpy as np

from lexer import BrewcoError
from syntax import SourceLocation
from values import (
    TYPE_ARRAY,
    TYPE_BOOLEAN,
    TYPE_BOUND_METHOD,
    TYPE_FUNCTION,
    TYPE_NUMBER,
    TYPE_STRING,
    Value,
    array,
    boolean,
    copy_value,
    display,
    number,
    string,
)

if TYPE_CHECKING:
    from interpreter import Interpreter


PANTRY_EXTENSIONS = (".brewco", ".coffee")


class NativeError(BrewcoError):
    """Raised by a native function; the caller turns it into a catchable runtime error."""


NativeImpl = Callable[["Interpreter", List[Value], SourceLocation], Value]


@dataclass
class BuiltinFunction:
    name: str
    min_args: int
    max_args: Optional[int]
    impl: NativeImpl

    def validate(self, supplied: int) -> None:
        if self.min_args == self.max_args and supplied != self.min_args:
            noun = "argument" if self.min_args == 1 else "arguments"
            raise NativeError(f"{self.name}() expects {self.min_args} {noun}, but got {supplied}")
        if supplied < self.min_args:
            raise NativeError(f"{self.name}() expects at least {self.min_args} arguments, but got {supplied}")
        if self.max_args is not None and supplied > self.max_args:
            raise NativeError(f"{self.name}() expects at most {self.max_args} arguments, but got {supplied}")


def _as_index(x: float) -> int:
    # Negative and NaN positions clamp to zero.
    if not x > 0:
        return 0
    if math.isinf(x):
        return sys.maxsize
    return int(x)


class Natives:
    def __init__(self, seed: Optional[int] = None) -> None:
        self.rng = np.random.default_rng(seed)
        self.table: Dict[str, BuiltinFunction] = {}
        # math
        self._register("root_drip", 1, 1, self._root_drip)
        self._register_number_unary("absolute_aroma", lambda x: float(np.abs(x)))
        self._register_number_unary("round_up_the_grounds", lambda x: float(np.ceil(x)))
        self._register_number_unary("settle_the_grounds", lambda x: float(np.floor(x)))
        self._register_number_unary("perfect_temperature", self._round_half_away)
        self._register("extra_shot", 2, 2, self._extra_shot)
        self._register("brew_minimum", 2, 2, self._brew_minimum)
        self._register("brew_maximum", 2, 2, self._brew_maximum)
        # strings
        self._register("string_length", 1, 1, self._string_length)
        self._register("brew_blend", 2, 2, self._brew_blend)
        self._register("foam_up", 1, 1, self._foam_up)
        self._register("settle_down", 1, 1, self._settle_down)
        self._register("grind_to_pieces", 2, 2, self._grind_to_pieces)
        self._register("filter_grounds", 2, 2, self._filter_grounds)
        self._register("first_sip", 2, 2, self._first_sip)
        # arrays
        self._register("cup_size", 1, 1, self._cup_size)
        self._register("add_to_cup", 2, 2, self._add_to_cup)
        self._register("pour_together", 2, 2, self._pour_together)
        self._register("extract_brew", 2, 2, self._extract_brew)
        self._register("reverse_pour", 1, 1, self._reverse_pour)
        # misc
        self._register("random_bean", 0, None, self._random_bean)
        self._register("brewing_time", 0, None, self._brewing_time)
        self._register("coffee_strength_check", 1, 1, self._coffee_strength_check)
        # type tests
        self._register_type_test("is_brew", (TYPE_FUNCTION, TYPE_BOUND_METHOD))
        self._register_type_test("is_number", (TYPE_NUMBER,))
        self._register_type_test("is_string", (TYPE_STRING,))
        self._register_type_test("is_cup", (TYPE_ARRAY,))
        self._register_type_test("is_boolean_bean", (TYPE_BOOLEAN,))
        # I/O
        self._register("whats_the_gossip", 0, 1, self._whats_the_gossip)
        self._register("sip_file", 1, 1, self._sip_file)
        self._register("pour_to_file", 2, 2, self._pour_to_file)
        self._register("recipe_exists", 1, 1, self._recipe_exists)
        self._register("scan_pantry", 1, 1, self._scan_pantry)

    def _register(self, name: str, min_args: int, max_args: Optional[int], impl: NativeImpl) -> None:
        self.table[name] = BuiltinFunction(name=name, min_args=min_args, max_args=max_args, impl=impl)

    def _register_number_unary(self, name: str, func: Callable[[float], float]) -> None:
        def impl(_: "Interpreter", args: List[Value], __: SourceLocation) -> Value:
            x = self._expect_number(args[0], f"{name}() expects a number as an argument.")
            return number(func(x))

        self._register(name, 1, 1, impl)

    def _register_type_test(self, name: str, kinds: tuple) -> None:
        def impl(_: "Interpreter", args: List[Value], __: SourceLocation) -> Value:
            return boolean(args[0].type in kinds)

        self._register(name, 1, 1, impl)

    def has(self, name: str) -> bool:
        return name in self.table

    def names(self) -> List[str]:
        return sorted(self.table)

    def invoke(self, interpreter: "Interpreter", name: str, args: List[Value], location: SourceLocation) -> Value:
        builtin = self.table.get(name)
        if builtin is None:
            raise NativeError(f"Unknown native function '{name}'")
        builtin.validate(len(args))
        return builtin.impl(interpreter, args, location)

    # Helpers
    def _expect_number(self, value: Value, message: str) -> float:
        if value.type != TYPE_NUMBER:
            raise NativeError(message)
        return value.value

    def _expect_string(self, value: Value, message: str) -> str:
        if value.type != TYPE_STRING:
            raise NativeError(message)
        return value.value

    def _expect_array(self, value: Value, message: str) -> List[Value]:
        if value.type != TYPE_ARRAY:
            raise NativeError(message)
        return value.value

    @staticmethod
    def _round_half_away(x: float) -> float:
        return float(np.sign(x) * np.floor(np.abs(x) + 0.5))

    # math
    def _root_drip(self, _: "Interpreter", args: List[Value], __: SourceLocation) -> Value:
        x = self._expect_number(args[0], "root_drip() expects a number as an argument.")
        if x < 0:
            raise NativeError("Cannot take the square root of a negative number.")
        return number(math.sqrt(x))

    def _extra_shot(self, _: "Interpreter", args: List[Value], __: SourceLocation) -> Value:
        message = "extra_shot() expects numbers as arguments."
        base = self._expect_number(args[0], message)
        exponent = self._expect_number(args[1], message)
        with np.errstate(all="ignore"):
            result = np.power(np.float64(base), np.float64(exponent))
        return number(float(result))

    def _brew_minimum(self, _: "Interpreter", args: List[Value], __: SourceLocation) -> Value:
        message = "brew_minimum() expects numbers as arguments."
        left = self._expect_number(args[0], message)
        right = self._expect_number(args[1], message)
        return number(float(np.fmin(left, right)))

    def _brew_maximum(self, _: "Interpreter", args: List[Value], __: SourceLocation) -> Value:
        message = "brew_maximum() expects numbers as arguments."
        left = self._expect_number(args[0], message)
        right = self._expect_number(args[1], message)
        return number(float(np.fmax(left, right)))

    # strings
    def _string_length(self, _: "Interpreter", args: List[Value], __: SourceLocation) -> Value:
        text = self._expect_string(args[0], "string_length() expects a string as an argument.")
        return number(len(text))

    def _brew_blend(self, _: "Interpreter", args: List[Value], __: SourceLocation) -> Value:
        message = "brew_blend() expects strings as arguments."
        return string(self._expect_string(args[0], message) + self._expect_string(args[1], message))

    def _foam_up(self, _: "Interpreter", args: List[Value], __: SourceLocation) -> Value:
        return string(self._expect_string(args[0], "foam_up() expects a string as an argument.").upper())

    def _settle_down(self, _: "Interpreter", args: List[Value], __: SourceLocation) -> Value:
        return string(self._expect_string(args[0], "settle_down() expects a string as an argument.").lower())

    def _grind_to_pieces(self, _: "Interpreter", args: List[Value], __: SourceLocation) -> Value:
        text = self._expect_string(args[0], "grind_to_pieces() expects a string as the first argument.")
        delimiter = self._expect_string(args[1], "grind_to_pieces() expects a string as the second argument.")
        if delimiter == "":
            pieces = ["", *text, ""]
        else:
            pieces = text.split(delimiter)
        return array([string(piece) for piece in pieces])

    def _filter_grounds(self, _: "Interpreter", args: List[Value], __: SourceLocation) -> Value:
        text = self._expect_string(args[0], "filter_grounds() expects a string as the first argument.")
        start = _as_index(self._expect_number(args[1], "filter_grounds() expects a number as the second argument."))
        return string(text[start:])

    def _first_sip(self, _: "Interpreter", args: List[Value], __: SourceLocation) -> Value:
        text = self._expect_string(args[0], "first_sip() expects a string as the first argument.")
        length = _as_index(self._expect_number(args[1], "first_sip() expects a number as the second argument."))
        return string(text[:length])

    # arrays
    def _cup_size(self, _: "Interpreter", args: List[Value], __: SourceLocation) -> Value:
        return number(len(self._expect_array(args[0], "cup_size() expects an array as an argument.")))

    def _add_to_cup(self, _: "Interpreter", args: List[Value], __: SourceLocation) -> Value:
        items = self._expect_array(args[0], "add_to_cup() expects an array as the first argument.")
        return array([copy_value(item) for item in items] + [copy_value(args[1])])

    def _pour_together(self, _: "Interpreter", args: List[Value], __: SourceLocation) -> Value:
        message = "pour_together() expects arrays as arguments."
        first = self._expect_array(args[0], message)
        second = self._expect_array(args[1], message)
        return array([copy_value(item) for item in first + second])

    def _extract_brew(self, _: "Interpreter", args: List[Value], __: SourceLocation) -> Value:
        items = self._expect_array(args[0], "extract_brew() expects an array as the first argument.")
        index = _as_index(self._expect_number(args[1], "extract_brew() expects a number as the second argument."))
        if index >= len(items):
            raise NativeError("extract_brew() index out of bounds!")
        return copy_value(items[index])

    def _reverse_pour(self, _: "Interpreter", args: List[Value], __: SourceLocation) -> Value:
        items = self._expect_array(args[0], "reverse_pour() expects an array as an argument.")
        return array([copy_value(item) for item in reversed(items)])

    # misc
    def _random_bean(self, _: "Interpreter", __: List[Value], ___: SourceLocation) -> Value:
        return number(float(self.rng.random()))

    def _brewing_time(self, _: "Interpreter", __: List[Value], ___: SourceLocation) -> Value:
        return number(float(int(time.time())))

    def _coffee_strength_check(self, _: "Interpreter", args: List[Value], __: SourceLocation) -> Value:
        level = self._expect_number(args[0], "coffee_strength_check() expects a number as an argument.")
        if level < 3:
            return string("weak")
        if level < 7:
            return string("medium")
        return string("strong")

    # I/O
    def _whats_the_gossip(self, interpreter: "Interpreter", args: List[Value], __: SourceLocation) -> Value:
        prompt = display(args[0]) if args else ""
        try:
            text = interpreter.input_provider(prompt)
        except EOFError:
            raise NativeError("Failed to read line.")
        return string(text.strip())

    def _sip_file(self, _: "Interpreter", args: List[Value], __: SourceLocation) -> Value:
        path = self._expect_string(args[0], "sip_file() expects a string file path")
        try:
            with open(path, "r", encoding="utf-8") as handle:
                return string(handle.read())
        except OSError as exc:
            raise NativeError(f"File reading spill: Failed to sip from recipe '{path}': {exc}")

    def _pour_to_file(self, _: "Interpreter", args: List[Value], __: SourceLocation) -> Value:
        message = "pour_to_file() expects string arguments"
        path = self._expect_string(args[0], message)
        content = self._expect_string(args[1], message)
        try:
            with open(path, "w", encoding="utf-8") as handle:
                handle.write(content)
        except OSError as exc:
            raise NativeError(f"File writing spill: Failed to pour into recipe '{path}': {exc}")
        return boolean(True)

    def _recipe_exists(self, _: "Interpreter", args: List[Value], __: SourceLocation) -> Value:
        path = self._expect_string(args[0], "recipe_exists() expects a string file path")
        return boolean(os.path.exists(path))

    def _scan_pantry(self, _: "Interpreter", args: List[Value], __: SourceLocation) -> Value:
        path = self._expect_string(args[0], "scan_pantry() expects a string directory path")
        try:
            entries = os.listdir(path)
        except OSError as exc:
            raise NativeError(f"Failed to scan coffee pantry '{path}': {exc}")
        recipes = sorted(
            entry for entry in entries
            if entry.endswith(PANTRY_EXTENSIONS) and os.path.isfile(os.path.join(path, entry))
        )
        return array([string(entry) for entry in recipes])
