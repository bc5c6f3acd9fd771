"""Structured diagnostics ("spill reports") for parse, type and runtime problems.

A ``Diagnostic`` pairs a classification with a position, the raw message and a
list of remediation hints. Hints are derived from the kind and from words in
the message, so the same problem always yields the same report.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List, Optional


UNEXPECTED_INGREDIENT = "UnexpectedIngredient"
MISSING_BEAN = "MissingBean"
WRONG_BREWING_METHOD = "WrongBrewingMethod"
INCOMPLETE_RECIPE = "IncompleteRecipe"
BEAN_NOT_FOUND = "BeanNotFound"
WRONG_CUP_TYPE = "WrongCupType"
OVER_EXTRACTION = "OverExtraction"
UNDER_EXTRACTION = "UnderExtraction"
CONFLICTING_FLAVORS = "ConflictingFlavors"
MISSING_AROMA = "MissingAroma"
TOO_MANY_SHOTS = "TooManyShots"
NOT_ENOUGH_CAFFEINE = "NotEnoughCaffeine"

KIND_DESCRIPTIONS: Dict[str, str] = {
    UNEXPECTED_INGREDIENT: "Unexpected Ingredient Found",
    MISSING_BEAN: "Missing Coffee Bean",
    WRONG_BREWING_METHOD: "Wrong Brewing Method",
    INCOMPLETE_RECIPE: "Incomplete Recipe",
    BEAN_NOT_FOUND: "Coffee Bean Not Found",
    WRONG_CUP_TYPE: "Wrong Cup Type",
    OVER_EXTRACTION: "Over-Extraction Error",
    UNDER_EXTRACTION: "Under-Extraction Error",
    CONFLICTING_FLAVORS: "Conflicting Flavors",
    MISSING_AROMA: "Missing Aroma",
    TOO_MANY_SHOTS: "Too Many Espresso Shots",
    NOT_ENOUGH_CAFFEINE: "Not Enough Caffeine",
}

KIND_HINTS: Dict[str, List[str]] = {
    UNEXPECTED_INGREDIENT: [
        "Check if you're using the right coffee syntax",
        "Maybe you meant to use a different operator like 'add' instead of '+'?",
        "Look for missing semicolons or brackets that might be causing confusion",
    ],
    MISSING_BEAN: [
        "Don't forget to declare your beans with 'beans variable_name pour_in value'",
        "Check for typos in your variable names - Brewco is case-sensitive",
        "Make sure the variable is in scope where you're trying to use it",
    ],
    WRONG_BREWING_METHOD: [
        "Brewco uses coffee-themed operators: 'add', 'sip', 'more_caffeine', etc.",
        "Try 'same_blend' for equality comparison instead of '=='",
        "Use 'pour_in' for assignment instead of '='",
    ],
    INCOMPLETE_RECIPE: [
        "Every recipe needs all its ingredients - check for missing parts",
        "Make sure your blocks are properly closed with '}'",
        "Check that function calls have matching parentheses",
    ],
    BEAN_NOT_FOUND: [
        "This coffee bean hasn't been planted yet - declare it first",
        "Check the spelling of your variable name",
        "Make sure the variable is declared in the current scope",
    ],
    WRONG_CUP_TYPE: [
        "You're trying to pour coffee into the wrong cup type",
        "Check if you're mixing numbers with strings incorrectly",
        "Use type conversion functions if needed",
    ],
    TOO_MANY_SHOTS: [
        "This function is getting more espresso shots than it can handle",
        "Check the function signature to see how many parameters it expects",
        "Remove extra arguments or add parameters to the function definition",
    ],
}

GENERIC_HINTS: List[str] = [
    "Take a sip of coffee and review the code carefully",
    "Check the Brewco documentation for syntax examples",
    "Try breaking the problem into smaller brewing steps",
]

REPL_HINT = "Use the Brewco REPL to test small snippets: 'brewco repl'"
TYPING_HINT = "Remember: Brewco is strongly typed like a perfectly calibrated espresso machine"


def generate_hints(kind: str, message: str) -> List[str]:
    hints = list(KIND_HINTS.get(kind, GENERIC_HINTS))
    if "parse" in message or "syntax" in message:
        hints.append(REPL_HINT)
    if "type" in message:
        hints.append(TYPING_HINT)
    return hints


@dataclass
class Diagnostic:
    kind: str
    line: int
    column: int
    message: str
    hints: List[str] = field(default_factory=list)
    context: Optional[str] = None

    @classmethod
    def create(cls, kind: str, line: int, column: int, message: str, context: Optional[str] = None) -> "Diagnostic":
        if kind not in KIND_DESCRIPTIONS:
            raise ValueError(f"Unknown diagnostic kind '{kind}'")
        return cls(
            kind=kind,
            line=line,
            column=column,
            message=message,
            hints=generate_hints(kind, message),
            context=context,
        )

    @property
    def description(self) -> str:
        return KIND_DESCRIPTIONS[self.kind]

    def render(self) -> str:
        lines: List[str] = [
            f"COFFEE SPILL ALERT! {self.description} at line {self.line}, column {self.column}",
            f"What happened: {self.message}",
        ]
        if self.context:
            lines.append("In this brewing context:")
            lines.append(f"   {self.context}")
        if self.hints:
            lines.append("")
            lines.append("The Barista's Wisdom:")
            for number, hint in enumerate(self.hints, start=1):
                lines.append(f"   {number}. {hint}")
        lines.append("")
        lines.append("Don't let this spill ruin your brew! Clean it up and keep brewing.")
        return "\n".join(lines) + "\n"

    def __str__(self) -> str:
        return self.render()


def unexpected_token(line: int, column: int, found: str, expected: str) -> Diagnostic:
    message = f"Found '{found}' when brewing, but expected '{expected}'. It's like adding salt instead of sugar!"
    return Diagnostic.create(UNEXPECTED_INGREDIENT, line, column, message)


def incomplete_recipe(line: int, column: int, what_missing: str) -> Diagnostic:
    message = (
        f"Your coffee recipe is incomplete - missing {what_missing}. "
        "Every good brew needs all its ingredients!"
    )
    return Diagnostic.create(INCOMPLETE_RECIPE, line, column, message)
