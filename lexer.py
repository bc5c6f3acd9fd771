from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, List, Optional


class BrewcoError(Exception):
    """Base class for interpreter errors."""


class BrewcoParseError(BrewcoError):
    """Raised when parsing fails."""

    def __init__(self, message: str, token: Optional["Token"] = None, expected: Optional[str] = None) -> None:
        super().__init__(message)
        self.token = token
        self.expected = expected


@dataclass
class Token:
    type: str
    value: str
    line: int
    column: int


# Word spellings. Operators share their tag with the symbolic spelling so the
# parser never needs to know which one was written.
KEYWORDS: Dict[str, str] = {
    "beans": "BEANS",
    "bean": "BEAN",
    "brew": "BREW",
    "blend": "BLEND",
    "taste": "TASTE",
    "otherwise": "OTHERWISE",
    "steep": "STEEP",
    "pour": "POUR",
    "foreach": "FOREACH",
    "in": "IN",
    "roast": "ROAST",
    "serve": "SERVE",
    "serve_back": "SERVE",
    "break": "BREAK",
    "continue": "CONTINUE",
    "this": "THIS",
    "super": "SUPER",
    "recipe": "RECIPE",
    "new": "NEW",
    "brew_time": "BREW_TIME",
    "taste_carefully": "TASTE_CAREFULLY",
    "if_spilled": "IF_SPILLED",
    "grind": "GRIND",
    "refill_with": "REFILL_WITH",
    "add": "ADD",
    "sip": "SUB",
    "brewop": "MUL",
    "brew_op": "MUL",
    "pourop": "DIV",
    "pour_op": "DIV",
    "grounds": "MOD",
    "same_blend": "EQ",
    "different_blend": "NE",
    "less_caffeine": "LT",
    "more_caffeine": "GT",
    "not_stronger": "LE",
    "not_weaker": "GE",
    "with": "AND",
    "or": "OR",
    "no_foam": "NOT",
    "blend_with": "BITAND",
    "top_with": "BITOR",
    "spice": "BITXOR",
    "invert": "BITNOT",
    "double_shot": "SHL",
    "half_caf": "SHR",
    "pour_in": "ASSIGN",
}

SYMBOLS: Dict[str, str] = {
    "(": "LPAREN",
    ")": "RPAREN",
    "{": "LBRACE",
    "}": "RBRACE",
    "[": "LBRACKET",
    "]": "RBRACKET",
    ",": "COMMA",
    ".": "DOT",
    ":": "COLON",
    ";": "SEMICOLON",
    "+": "ADD",
    "*": "MUL",
    "%": "MOD",
    "^": "BITXOR",
    "~": "BITNOT",
}

# first character -> [(second character, tag)], tag used alone when no pair matches
TWO_CHAR_OPERATORS: Dict[str, List[tuple]] = {
    "=": [("=", "EQ")],
    "!": [("=", "NE")],
    ">": [(">", "SHR"), ("=", "GE")],
    "<": [("<", "SHL"), ("=", "LE")],
    "-": [(">", "ARROW")],
    "&": [("&", "AND")],
    "|": [("|", "OR")],
}

SINGLE_CHAR_FALLBACK: Dict[str, str] = {
    "=": "ASSIGN",
    "!": "NOT",
    ">": "GT",
    "<": "LT",
    "-": "SUB",
    "&": "BITAND",
    "|": "BITOR",
}

COMMENT_MARKER = "\U0001F380"
DIGITS = "0123456789"


class Lexer:
    def __init__(self, text: str, filename: str = "<string>") -> None:
        self.text = text
        self.filename = filename
        self.index = 0
        self.line = 1
        self.column = 1

    def tokenize(self) -> List[Token]:
        tokens: List[Token] = []
        tokens_append = tokens.append
        _advance = self._advance
        symbols = SYMBOLS
        text = self.text
        n = len(text)

        while self.index < n:
            ch: str = text[self.index]
            if ch == " " or ch == "\t" or ch == "\r":
                _advance()
                continue
            if ch == "\n":
                tokens_append(Token("NEWLINE", "\n", self.line, self.column))
                _advance()
                continue
            if ch == COMMENT_MARKER:
                self._consume_comment()
                continue
            if ch == "/":
                if self._peek_ahead(1) == "/":
                    self._consume_comment()
                else:
                    tokens_append(Token("DIV", "/", self.line, self.column))
                    _advance()
                continue
            if ch in TWO_CHAR_OPERATORS:
                tokens_append(self._consume_operator(ch))
                continue
            if ch in symbols:
                tokens_append(Token(symbols[ch], ch, self.line, self.column))
                _advance()
                continue
            if ch == '"':
                tokens_append(self._consume_string())
                continue
            if self._is_digit(ch):
                tokens_append(self._consume_number())
                continue
            if ch.isalpha():
                tokens_append(self._consume_identifier())
                continue
            # Anything else is not part of the language; drop it.
            _advance()
        tokens_append(Token("EOF", "", self.line, self.column))
        return tokens

    def _consume_comment(self) -> None:
        text = self.text
        n = len(text)
        _advance = self._advance
        while self.index < n and text[self.index] != "\n":
            _advance()

    def _consume_operator(self, first: str) -> Token:
        line, col = self.line, self.column
        following = self._peek_ahead(1)
        for second, tag in TWO_CHAR_OPERATORS[first]:
            if following == second:
                self._advance()
                self._advance()
                return Token(tag, first + second, line, col)
        self._advance()
        return Token(SINGLE_CHAR_FALLBACK[first], first, line, col)

    def _consume_string(self) -> Token:
        line, col = self.line, self.column
        self._advance()  # consume opening quote
        chars: List[str] = []
        while not self._eof:
            ch = self._peek()
            if ch == '"':
                self._advance()
                break
            chars.append(ch)
            self._advance()
        # An unterminated literal simply runs to the end of the input.
        return Token("STRING", "".join(chars), line, col)

    def _consume_number(self) -> Token:
        line, col = self.line, self.column
        digits = self._consume_digits()
        # Only treat '.' as a radix point when a digit follows, so member
        # access on a number literal still lexes as DOT.
        if not self._eof and self._peek() == "." and self._is_digit(self._peek_ahead(1)):
            self._advance()
            return Token("NUMBER", f"{digits}.{self._consume_digits()}", line, col)
        return Token("NUMBER", digits, line, col)

    def _consume_digits(self) -> str:
        digits: List[str] = []
        text = self.text
        n = len(text)
        while self.index < n and text[self.index] in DIGITS:
            digits.append(text[self.index])
            self._advance()
        return "".join(digits)

    def _consume_identifier(self) -> Token:
        line, col = self.line, self.column
        chars: List[str] = []
        text = self.text
        n = len(text)
        _advance = self._advance
        while self.index < n:
            ch = text[self.index]
            if ch.isalnum() or ch == "_":
                chars.append(ch)
                _advance()
                continue
            break
        value = "".join(chars)
        token_type: str = KEYWORDS.get(value, "IDENT")
        return Token(token_type, value, line, col)

    @property
    def _eof(self) -> bool:
        return self.index >= len(self.text)

    def _peek(self) -> str:
        return self.text[self.index]

    def _peek_ahead(self, offset: int) -> str:
        position = self.index + offset
        if position < len(self.text):
            return self.text[position]
        return ""

    def _is_digit(self, ch: str) -> bool:
        return ch != "" and ch in DIGITS

    def _advance(self) -> None:
        if self.text[self.index] == "\n":
            self.line += 1
            self.column = 1
        else:
            self.column += 1
        self.index += 1


def lex(text: str, filename: str = "<string>") -> List[Token]:
    return Lexer(text, filename).tokenize()
