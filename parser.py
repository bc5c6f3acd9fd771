from __future__ import annotations
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Tuple

from diagnostics import Diagnostic, UNEXPECTED_INGREDIENT, incomplete_recipe, unexpected_token
from lexer import BrewcoParseError, Token, lex
from syntax import (
    ArrayDecl,
    ArrayLiteral,
    Assignment,
    BeanDecl,
    BINARY_PRECEDENCE,
    BinaryOp,
    BooleanLiteral,
    Break,
    BrewDecl,
    BrewTime,
    Call,
    Continue,
    Expression,
    ExpressionStatement,
    FieldDecl,
    For,
    Foreach,
    Grind,
    Identifier,
    If,
    IndexAccess,
    MemberAccess,
    MethodSignature,
    NewBean,
    NumberLiteral,
    ObjectDecl,
    ObjectLiteral,
    Param,
    Print,
    RecipeDecl,
    Return,
    Roast,
    RoastArm,
    SourceLocation,
    Statement,
    StringLiteral,
    SuperExpr,
    ThisExpr,
    TryCatch,
    UNARY_OPERATORS,
    UnaryOp,
    VarDecl,
    While,
)


ASSIGNMENT_TOKENS = {"ASSIGN", "REFILL_WITH"}
SEPARATOR_TOKENS = {"NEWLINE", "SEMICOLON"}
RETURN_TERMINATORS = {"NEWLINE", "SEMICOLON", "RBRACE", "EOF"}
PRINT_WORD = "pourout"


@dataclass
class ParseResult:
    statements: List[Statement]
    diagnostics: List[Diagnostic] = field(default_factory=list)

    @property
    def errors(self) -> List[str]:
        return [diagnostic.message for diagnostic in self.diagnostics]

    @property
    def ok(self) -> bool:
        return not self.diagnostics


class Parser:
    def __init__(self, tokens: List[Token], filename: str, source_lines: List[str]):
        self.tokens = tokens
        self.filename = filename
        self.source_lines = source_lines
        self.index = 0
        self.diagnostics: List[Diagnostic] = []

    def parse(self) -> ParseResult:
        self.diagnostics = []
        statements: List[Statement] = []
        self._skip_separators()
        while self._peek().type != "EOF":
            try:
                statements.append(self._parse_statement())
            except BrewcoParseError as exc:
                self._record(exc)
                self._synchronize({"NEWLINE"})
            self._skip_separators()
        return ParseResult(statements=statements, diagnostics=list(self.diagnostics))

    # ---- statements ----

    def _parse_statements(self, stop_tokens: Iterable[str]) -> List[Statement]:
        stop = set(stop_tokens)
        statements: List[Statement] = []
        self._skip_separators()
        while self._peek().type not in stop:
            if self._peek().type == "EOF":
                raise BrewcoParseError("Unexpected end of input inside a block", self._peek(), "}")
            try:
                statements.append(self._parse_statement())
            except BrewcoParseError as exc:
                if exc.token is not None and exc.token.type == "EOF":
                    # An unterminated block is reported once, by the outermost statement.
                    raise
                self._record(exc)
                self._synchronize({"NEWLINE"} | stop)
            self._skip_separators()
        return statements

    def _parse_statement(self) -> Statement:
        token = self._peek()
        kind = token.type
        if kind == "BREAK":
            self._consume("BREAK")
            return Break(location=self._location_from_token(token))
        if kind == "CONTINUE":
            self._consume("CONTINUE")
            return Continue(location=self._location_from_token(token))
        if kind == "SERVE":
            return self._parse_return()
        if kind == "STEEP":
            return self._parse_while()
        if kind == "TASTE":
            return self._parse_if()
        if kind == "POUR":
            return self._parse_pour()
        if kind == "FOREACH":
            return self._parse_foreach(self._consume("FOREACH"))
        if kind == "ROAST":
            return self._parse_roast()
        if kind == "TASTE_CAREFULLY":
            return self._parse_try_catch()
        if kind == "BEAN":
            return self._parse_bean()
        if kind == "RECIPE":
            return self._parse_recipe()
        if kind == "BREW":
            return self._parse_brew()
        if kind == "BEANS":
            return self._parse_variable_declaration()
        if kind == "BREW_TIME":
            self._consume("BREW_TIME")
            duration = self._parse_expression()
            return BrewTime(location=self._location_from_token(token), duration=duration)
        if kind == "IDENT" and token.value == PRINT_WORD:
            return self._parse_print()
        expr: Expression = self._parse_expression()
        return ExpressionStatement(location=self._location_from_token(token), expression=expr)

    def _parse_return(self) -> Return:
        keyword = self._consume("SERVE")
        value: Optional[Expression] = None
        if self._peek().type not in RETURN_TERMINATORS:
            value = self._parse_expression()
        return Return(location=self._location_from_token(keyword), value=value)

    def _parse_while(self) -> While:
        keyword = self._consume("STEEP")
        condition = self._parse_expression()
        body = self._parse_block()
        return While(location=self._location_from_token(keyword), condition=condition, body=body)

    def _parse_if(self) -> If:
        keyword = self._consume("TASTE")
        condition = self._parse_expression()
        then_branch = self._parse_block()
        else_branch: List[Statement] = []
        if self._match_after_newlines("OTHERWISE"):
            if self._peek().type == "TASTE":
                else_branch = [self._parse_if()]
            else:
                else_branch = self._parse_block()
        return If(
            location=self._location_from_token(keyword),
            condition=condition,
            then_branch=then_branch,
            else_branch=else_branch,
        )

    def _parse_pour(self) -> Statement:
        keyword = self._consume("POUR")
        if self._peek().type == "IDENT" and self._peek_next().type == "IN":
            return self._parse_foreach(keyword)

        init: Optional[Statement] = None
        if not self._match("SEMICOLON"):
            init = self._parse_statement()
            self._consume("SEMICOLON")

        condition: Expression
        if self._peek().type == "SEMICOLON":
            condition = BooleanLiteral(location=self._location_from_token(self._peek()), value=True)
        else:
            condition = self._parse_expression()
        self._consume("SEMICOLON")

        increment: Optional[Expression] = None
        if self._peek().type != "LBRACE":
            increment = self._parse_expression()

        body = self._parse_block()
        return For(
            location=self._location_from_token(keyword),
            init=init,
            condition=condition,
            increment=increment,
            body=body,
        )

    def _parse_foreach(self, keyword: Token) -> Foreach:
        variable = self._consume("IDENT")
        self._consume("IN")
        iterable = self._parse_expression()
        body = self._parse_block()
        return Foreach(
            location=self._location_from_token(keyword),
            variable=variable.value,
            iterable=iterable,
            body=body,
        )

    def _parse_roast(self) -> Roast:
        keyword = self._consume("ROAST")
        subject = self._parse_expression()
        self._consume("LBRACE")
        arms: List[RoastArm] = []
        default: List[Statement] = []
        self._skip_separators()
        while self._peek().type != "RBRACE":
            if self._peek().type == "EOF":
                raise BrewcoParseError("Unexpected end of input inside roast", self._peek(), "}")
            if self._match("OTHERWISE"):
                self._consume("COLON")
                default = self._parse_case_body()
            else:
                case = self._parse_expression()
                self._consume("COLON")
                arms.append(RoastArm(case=case, body=self._parse_case_body()))
            self._skip_separators()
        self._consume("RBRACE")
        return Roast(location=self._location_from_token(keyword), subject=subject, arms=arms, default=default)

    def _parse_case_body(self) -> List[Statement]:
        if self._peek().type == "LBRACE":
            return self._parse_block()
        return [self._parse_statement()]

    def _parse_try_catch(self) -> TryCatch:
        keyword = self._consume("TASTE_CAREFULLY")
        try_branch = self._parse_block()
        if not self._match_after_newlines("IF_SPILLED"):
            raise BrewcoParseError(
                f"Expected token IF_SPILLED but found {self._peek().type} at line {self._peek().line}",
                self._peek(),
                "if_spilled",
            )
        error_variable: Optional[str] = None
        if self._match("LPAREN"):
            error_variable = self._consume("IDENT").value
            self._consume("RPAREN")
        catch_branch = self._parse_block()
        return TryCatch(
            location=self._location_from_token(keyword),
            try_branch=try_branch,
            error_variable=error_variable,
            catch_branch=catch_branch,
        )

    def _parse_variable_declaration(self) -> Statement:
        keyword = self._consume("BEANS")
        name = self._consume("IDENT").value
        type_annotation: Optional[str] = None
        if self._match("COLON"):
            type_annotation = self._consume("IDENT").value
        self._consume("ASSIGN")
        value = self._parse_expression()
        location = self._location_from_token(keyword)
        if type_annotation is None and isinstance(value, ArrayLiteral):
            return ArrayDecl(location=location, name=name, elements=value.elements)
        if type_annotation is None and isinstance(value, ObjectLiteral):
            return ObjectDecl(location=location, name=name, fields=value.fields)
        return VarDecl(location=location, name=name, type_annotation=type_annotation, value=value)

    def _parse_print(self) -> Print:
        keyword = self._consume("IDENT")
        self._skip_newlines()
        args: List[Expression] = [self._parse_expression()]
        while self._match("COMMA"):
            self._skip_newlines()
            args.append(self._parse_expression())
        location = self._location_from_token(keyword)
        if len(args) == 1:
            return Print(location=location, expression=args[0])
        return Print(location=location, expression=ArrayLiteral(location=location, elements=args))

    def _parse_bean(self) -> BeanDecl:
        keyword = self._consume("BEAN")
        name = self._consume("IDENT").value
        parent: Optional[str] = None
        if self._match("BLEND"):
            parent = self._consume("IDENT").value
        self._consume("LBRACE")
        fields: List[FieldDecl] = []
        methods: List[BrewDecl] = []
        self._skip_separators()
        while self._peek().type != "RBRACE":
            token = self._peek()
            if token.type == "BREW":
                methods.append(self._parse_brew())
            elif token.type == "BEANS":
                self._consume("BEANS")
                fields.append(self._parse_field())
            elif token.type == "IDENT" and self._peek_next().type == "ASSIGN":
                fields.append(self._parse_field())
            elif token.type == "EOF":
                raise BrewcoParseError(f"Unexpected end of input inside bean '{name}'", token, "}")
            else:
                raise BrewcoParseError(
                    f"Unexpected token {token.type} in bean '{name}' at line {token.line}",
                    token,
                    "a field or brew method",
                )
            self._skip_separators()
        self._consume("RBRACE")
        return BeanDecl(
            location=self._location_from_token(keyword),
            name=name,
            parent=parent,
            fields=fields,
            methods=methods,
        )

    def _parse_field(self) -> FieldDecl:
        name = self._consume("IDENT").value
        self._consume("ASSIGN")
        return FieldDecl(name=name, value=self._parse_expression())

    def _parse_recipe(self) -> RecipeDecl:
        keyword = self._consume("RECIPE")
        name = self._consume("IDENT").value
        self._consume("LBRACE")
        methods: List[MethodSignature] = []
        self._skip_separators()
        while self._peek().type != "RBRACE":
            token = self._peek()
            if token.type != "IDENT":
                raise BrewcoParseError(
                    f"Unexpected token {token.type} in recipe '{name}' at line {token.line}",
                    token,
                    "a method signature",
                )
            method_name = self._consume("IDENT").value
            self._consume("LPAREN")
            params = self._parse_params()
            self._consume("RPAREN")
            return_type = "Any"
            if self._match("ARROW"):
                return_type = self._consume("IDENT").value
            methods.append(MethodSignature(name=method_name, params=params, return_type=return_type))
            self._skip_separators()
        self._consume("RBRACE")
        return RecipeDecl(location=self._location_from_token(keyword), name=name, methods=methods)

    def _parse_brew(self) -> BrewDecl:
        keyword = self._consume("BREW")
        name = self._consume("IDENT").value
        self._consume("LPAREN")
        params = self._parse_params()
        self._consume("RPAREN")
        return_type: Optional[str] = None
        if self._match("COLON"):
            return_type = self._consume("IDENT").value
        body = self._parse_block()
        return BrewDecl(
            location=self._location_from_token(keyword),
            name=name,
            params=params,
            body=body,
            return_type=return_type,
        )

    def _parse_params(self) -> List[Param]:
        params: List[Param] = []
        if self._peek().type == "RPAREN":
            return params
        while True:
            name = self._consume("IDENT").value
            type_name = "Any"
            if self._match("COLON"):
                type_name = self._consume("IDENT").value
            params.append(Param(name=name, type_name=type_name))
            if not self._match("COMMA"):
                break
        return params

    def _parse_block(self) -> List[Statement]:
        opening = self._peek()
        if opening.type != "LBRACE":
            raise BrewcoParseError(
                f"Expected '{{' to start block but found {opening.type} at line {opening.line}",
                opening,
                "{",
            )
        self._consume("LBRACE")
        statements = self._parse_statements(stop_tokens={"RBRACE"})
        self._consume("RBRACE")
        return statements

    # ---- expressions ----

    def _parse_expression(self) -> Expression:
        return self._parse_assignment()

    def _parse_assignment(self) -> Expression:
        target = self._parse_binary(0)
        if self._peek().type in ASSIGNMENT_TOKENS:
            operator = self._peek()
            self.index += 1
            value = self._parse_assignment()
            if not isinstance(target, (Identifier, MemberAccess, IndexAccess)):
                raise BrewcoParseError(f"Invalid assignment target at line {operator.line}", operator)
            return Assignment(location=target.location, target=target, value=value)
        return target

    def _parse_binary(self, min_precedence: int) -> Expression:
        left = self._parse_unary()
        while True:
            operator = self._peek()
            precedence = BINARY_PRECEDENCE.get(operator.type)
            if precedence is None or precedence < min_precedence:
                break
            self.index += 1
            right = self._parse_binary(precedence + 1)
            left = BinaryOp(location=self._location_from_token(operator), left=left, op=operator.type, right=right)
        return left

    def _parse_unary(self) -> Expression:
        token = self._peek()
        if token.type in UNARY_OPERATORS:
            self.index += 1
            operand = self._parse_unary()
            return UnaryOp(location=self._location_from_token(token), op=UNARY_OPERATORS[token.type], operand=operand)
        return self._parse_postfix()

    def _parse_postfix(self) -> Expression:
        expr = self._parse_primary()
        while True:
            token = self._peek()
            if token.type == "LPAREN":
                self._consume("LPAREN")
                expr = Call(location=expr.location, callee=expr, args=self._parse_arguments())
            elif token.type == "DOT":
                self._consume("DOT")
                member = self._consume("IDENT")
                expr = MemberAccess(location=self._location_from_token(member), obj=expr, member=member.value)
            elif token.type == "LBRACKET":
                self._consume("LBRACKET")
                index = self._parse_expression()
                self._consume("RBRACKET")
                expr = IndexAccess(location=self._location_from_token(token), array=expr, index=index)
            else:
                return expr

    def _parse_arguments(self) -> List[Expression]:
        args: List[Expression] = []
        if self._match("RPAREN"):
            return args
        while True:
            args.append(self._parse_expression())
            if self._match("COMMA"):
                continue
            self._consume("RPAREN")
            return args

    def _parse_primary(self) -> Expression:
        token = self._peek()
        location = self._location_from_token(token)
        if token.type == "NUMBER":
            self.index += 1
            return NumberLiteral(location=location, value=float(token.value))
        if token.type == "STRING":
            self.index += 1
            return StringLiteral(location=location, value=token.value)
        if token.type == "IDENT":
            self.index += 1
            if token.value == "true":
                return BooleanLiteral(location=location, value=True)
            if token.value == "false":
                return BooleanLiteral(location=location, value=False)
            return Identifier(location=location, name=token.value)
        if token.type == "LPAREN":
            self._consume("LPAREN")
            expr = self._parse_expression()
            self._consume("RPAREN")
            return expr
        if token.type == "LBRACKET":
            return self._parse_array_literal()
        if token.type == "LBRACE":
            return self._parse_object_literal()
        if token.type == "NEW":
            self._consume("NEW")
            class_name = self._consume("IDENT").value
            args: List[Expression] = []
            if self._match("LPAREN"):
                args = self._parse_arguments()
            return NewBean(location=location, class_name=class_name, args=args)
        if token.type == "THIS":
            self.index += 1
            return ThisExpr(location=location)
        if token.type == "SUPER":
            self.index += 1
            return SuperExpr(location=location)
        if token.type == "GRIND":
            self._consume("GRIND")
            path = self._consume("STRING")
            return Grind(location=location, path=path.value)
        raise BrewcoParseError(f"Unexpected token {token.type} in expression at line {token.line}", token)

    def _parse_array_literal(self) -> ArrayLiteral:
        lbracket = self._consume("LBRACKET")
        elements: List[Expression] = []
        self._skip_newlines()
        if self._match("RBRACKET"):
            return ArrayLiteral(location=self._location_from_token(lbracket), elements=elements)
        while True:
            self._skip_newlines()
            elements.append(self._parse_expression())
            self._skip_newlines()
            if self._match("COMMA"):
                continue
            self._consume("RBRACKET")
            return ArrayLiteral(location=self._location_from_token(lbracket), elements=elements)

    def _parse_object_literal(self) -> ObjectLiteral:
        lbrace = self._consume("LBRACE")
        fields: List[Tuple[str, Expression]] = []
        self._skip_newlines()
        if self._match("RBRACE"):
            return ObjectLiteral(location=self._location_from_token(lbrace), fields=fields)
        while True:
            self._skip_newlines()
            key = self._peek()
            if key.type not in ("IDENT", "STRING"):
                raise BrewcoParseError(
                    f"Expected object key but found {key.type} at line {key.line}",
                    key,
                    "a field name",
                )
            self.index += 1
            self._skip_newlines()
            self._consume("COLON")
            self._skip_newlines()
            fields.append((key.value, self._parse_expression()))
            self._skip_newlines()
            if self._match("COMMA"):
                continue
            self._consume("RBRACE")
            return ObjectLiteral(location=self._location_from_token(lbrace), fields=fields)

    # ---- token helpers ----

    def _consume(self, token_type: str) -> Token:
        token = self._peek()
        if token.type != token_type:
            raise BrewcoParseError(
                f"Expected token {token_type} but found {token.type} at line {token.line}",
                token,
                token_type,
            )
        self.index += 1
        return token

    def _match(self, token_type: str) -> bool:
        if self._peek().type == token_type:
            self.index += 1
            return True
        return False

    def _match_after_newlines(self, token_type: str) -> bool:
        # Keywords such as 'otherwise' may continue a statement on a later line.
        i = self.index
        while self.tokens[i].type == "NEWLINE":
            i += 1
        if self.tokens[i].type == token_type:
            self.index = i + 1
            return True
        return False

    def _skip_newlines(self) -> None:
        while self._match("NEWLINE"):
            continue

    def _skip_separators(self) -> None:
        while self._peek().type in SEPARATOR_TOKENS:
            self.index += 1

    def _synchronize(self, stop_tokens: Iterable[str]) -> None:
        stop = set(stop_tokens) | {"EOF"}
        while self._peek().type not in stop:
            self.index += 1

    def _peek(self) -> Token:
        return self.tokens[self.index]

    def _peek_next(self) -> Token:
        if self.index + 1 < len(self.tokens):
            return self.tokens[self.index + 1]
        return self.tokens[-1]

    def _location_from_token(self, token: Token) -> SourceLocation:
        line_index = token.line - 1
        statement = ""
        if 0 <= line_index < len(self.source_lines):
            statement = self.source_lines[line_index].strip()
        return SourceLocation(file=self.filename, line=token.line, column=token.column, statement=statement)

    def _record(self, exc: BrewcoParseError) -> None:
        token = exc.token if exc.token is not None else self._peek()
        diagnostic: Diagnostic
        if token.type == "EOF":
            diagnostic = incomplete_recipe(token.line, token.column, f"'{exc.expected or 'the rest of the statement'}'")
        elif exc.expected is not None:
            diagnostic = unexpected_token(token.line, token.column, token.value.strip() or token.type, exc.expected)
        else:
            diagnostic = Diagnostic.create(
                UNEXPECTED_INGREDIENT,
                token.line,
                token.column,
                f"Could not parse this syntax: {exc}",
            )
        line_index = token.line - 1
        if 0 <= line_index < len(self.source_lines):
            diagnostic.context = self.source_lines[line_index].strip()
        self.diagnostics.append(diagnostic)


def parse(source: str, filename: str = "<string>") -> ParseResult:
    tokens = lex(source, filename)
    return Parser(tokens, filename, source.splitlines()).parse()
