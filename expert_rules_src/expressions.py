"""Condition expressions and action templates for expert rules.

Rule text is compiled into a small typed AST instead of being executed:

    condition   := or_expr
    or_expr     := and_expr ("||" and_expr)*
    and_expr    := comparison ("&&" comparison)*
    comparison  := operand (("==" | "!=" | ">=" | "<=" | ">" | "<") operand)?
    operand     := IDENT | NUMBER | "-" NUMBER | STRING | "(" or_expr ")"

``===`` and ``!==`` are accepted as synonyms for ``==`` and ``!=`` so rule
sets written for the legacy lab system keep parsing. Bare ``true`` and
``false`` are string literals.

Action templates are plain text with ``{identifier}`` placeholders;
``{{`` and ``}}`` produce literal braces.
"""

from dataclasses import dataclass, field


class ParseError(ValueError):
    """Raised when condition or action text cannot be compiled."""

    def __init__(self, message: str, token: str, position: int, source: str = ""):
        self.message = message
        self.token = token
        self.position = position
        self.source = source
        super().__init__(f"{message} at position {position} (token {token!r})")


# =============================================================================
# Tokens
# =============================================================================

@dataclass(frozen=True)
class Token:
    kind: str  # IDENT, NUMBER, STRING, OP, AND, OR, MINUS, LPAREN, RPAREN, EOF
    value: str
    position: int


COMPARISON_OPERATORS = ("==", "!=", ">=", "<=", ">", "<")
_OPERATOR_SYNONYMS = {"===": "==", "!==": "!="}
_BOOLEAN_WORDS = ("true", "false")
_DIGITS = "0123456789"

# Limits on parenthesis nesting and on compiled expression tree depth
MAX_NESTING = 32
MAX_DEPTH = 100


def tokenize(text: str) -> list[Token]:
    """Split condition text into tokens, ending with an EOF token."""
    tokens: list[Token] = []
    pos = 0
    length = len(text)

    while pos < length:
        ch = text[pos]

        if ch.isspace():
            pos += 1
            continue

        if ch == '"':
            span = _string_span(text, pos)
            tokens.append(_read_string(text, pos, span))
            pos += span
            continue

        if ch.isalpha() or ch == "_":
            start = pos
            pos += 1
            while pos < length and (text[pos].isalnum() or text[pos] == "_"):
                pos += 1
            tokens.append(Token("IDENT", text[start:pos], start))
            continue

        if ch in _DIGITS or (ch == "." and pos + 1 < length and text[pos + 1] in _DIGITS):
            start = pos
            seen_dot = False
            while pos < length and (text[pos] in _DIGITS or (text[pos] == "." and not seen_dot)):
                if text[pos] == ".":
                    seen_dot = True
                pos += 1
            tokens.append(Token("NUMBER", text[start:pos], start))
            continue

        three = text[pos:pos + 3]
        two = text[pos:pos + 2]
        if three in _OPERATOR_SYNONYMS:
            tokens.append(Token("OP", _OPERATOR_SYNONYMS[three], pos))
            pos += 3
            continue
        if two == "&&":
            tokens.append(Token("AND", two, pos))
            pos += 2
            continue
        if two == "||":
            tokens.append(Token("OR", two, pos))
            pos += 2
            continue
        if two in ("==", "!=", ">=", "<="):
            tokens.append(Token("OP", two, pos))
            pos += 2
            continue
        if ch in "<>":
            tokens.append(Token("OP", ch, pos))
            pos += 1
            continue
        if ch == "-":
            tokens.append(Token("MINUS", ch, pos))
            pos += 1
            continue
        if ch == "(":
            tokens.append(Token("LPAREN", ch, pos))
            pos += 1
            continue
        if ch == ")":
            tokens.append(Token("RPAREN", ch, pos))
            pos += 1
            continue

        raise ParseError("Unexpected character", ch, pos, text)

    tokens.append(Token("EOF", "", length))
    return tokens


def _string_span(text: str, start: int) -> int:
    """Length of the quoted literal starting at ``start`` (quotes included)."""
    pos = start + 1
    while pos < len(text):
        if text[pos] == "\\":
            pos += 2
            continue
        if text[pos] == '"':
            return pos - start + 1
        pos += 1
    raise ParseError("Unterminated string literal", text[start:], start, text)


def _read_string(text: str, start: int, span: int) -> Token:
    raw = text[start + 1:start + span - 1]
    chars: list[str] = []
    escaped = False
    for ch in raw:
        if escaped:
            chars.append(ch)
            escaped = False
        elif ch == "\\":
            escaped = True
        else:
            chars.append(ch)
    return Token("STRING", "".join(chars), start)


# =============================================================================
# AST
# =============================================================================

@dataclass(frozen=True)
class Expression:
    """Base class for compiled condition nodes."""


@dataclass(frozen=True)
class Identifier(Expression):
    name: str
    position: int = 0


@dataclass(frozen=True)
class Literal(Expression):
    value: str | float
    position: int = 0


@dataclass(frozen=True)
class Comparison(Expression):
    op: str
    left: Expression
    right: Expression


@dataclass(frozen=True)
class And(Expression):
    left: Expression
    right: Expression


@dataclass(frozen=True)
class Or(Expression):
    left: Expression
    right: Expression


def referenced_identifiers(expr: Expression) -> list[str]:
    """Identifiers used by an expression, in first-seen order."""
    seen: list[str] = []

    def walk(node: Expression) -> None:
        if isinstance(node, Identifier):
            if node.name not in seen:
                seen.append(node.name)
        elif isinstance(node, (Comparison, And, Or)):
            walk(node.left)
            walk(node.right)

    walk(expr)
    return seen


def expression_depth(expr: Expression) -> int:
    """Height of the expression tree (a lone comparison operand is 1)."""
    deepest = 0
    stack = [(expr, 1)]
    while stack:
        node, depth = stack.pop()
        deepest = max(deepest, depth)
        if isinstance(node, (Comparison, And, Or)):
            stack.append((node.left, depth + 1))
            stack.append((node.right, depth + 1))
    return deepest


class _Parser:
    """Recursive-descent parser over a token list."""

    def __init__(self, tokens: list[Token], source: str):
        self.tokens = tokens
        self.source = source
        self.pos = 0
        self.nesting = 0

    def parse(self) -> Expression:
        if self._peek().kind == "EOF":
            raise ParseError("Empty condition", "", 0, self.source)
        expr = self._parse_or()
        token = self._peek()
        if token.kind != "EOF":
            raise ParseError("Unexpected trailing token", token.value, token.position, self.source)
        if expression_depth(expr) > MAX_DEPTH:
            raise ParseError("Condition nested too deeply", "", 0, self.source)
        return expr

    def _parse_or(self) -> Expression:
        node = self._parse_and()
        while self._match("OR"):
            node = Or(node, self._parse_and())
        return node

    def _parse_and(self) -> Expression:
        node = self._parse_comparison()
        while self._match("AND"):
            node = And(node, self._parse_comparison())
        return node

    def _parse_comparison(self) -> Expression:
        left = self._parse_operand()
        if self._peek().kind == "OP":
            op = self._advance().value
            right = self._parse_operand()
            return Comparison(op, left, right)
        return left

    def _parse_operand(self) -> Expression:
        token = self._advance()

        if token.kind == "LPAREN":
            self.nesting += 1
            if self.nesting > MAX_NESTING:
                raise ParseError("Too many nested parentheses", token.value, token.position, self.source)
            expr = self._parse_or()
            closing = self._peek()
            if closing.kind != "RPAREN":
                raise ParseError("Expected ')'", closing.value, closing.position, self.source)
            self._advance()
            self.nesting -= 1
            return expr

        if token.kind == "IDENT":
            if token.value in _BOOLEAN_WORDS:
                return Literal(token.value, token.position)
            return Identifier(token.value, token.position)

        if token.kind == "STRING":
            return Literal(token.value, token.position)

        if token.kind == "NUMBER":
            return Literal(float(token.value), token.position)

        if token.kind == "MINUS":
            number = self._advance()
            if number.kind != "NUMBER":
                raise ParseError("Expected number after '-'", number.value, number.position, self.source)
            return Literal(-float(number.value), token.position)

        if token.kind == "EOF":
            raise ParseError("Unexpected end of expression", "", token.position, self.source)

        raise ParseError("Unexpected token", token.value, token.position, self.source)

    def _peek(self) -> Token:
        return self.tokens[self.pos]

    def _advance(self) -> Token:
        token = self.tokens[self.pos]
        if token.kind != "EOF":
            self.pos += 1
        return token

    def _match(self, kind: str) -> bool:
        if self._peek().kind == kind:
            self.pos += 1
            return True
        return False


def parse_condition(text: str) -> Expression:
    """Compile rule condition text into an expression tree.

    Unknown identifiers are accepted here; they only fail at evaluation
    time, so rules may reference open-map keys.

    Raises:
        ParseError: naming the offending token and its position.
    """
    if text is None:
        raise ParseError("Condition text is required", "", 0, "")
    return _Parser(tokenize(text), text).parse()


# =============================================================================
# Action templates
# =============================================================================

@dataclass(frozen=True)
class TextSegment:
    text: str


@dataclass(frozen=True)
class Placeholder:
    name: str
    position: int = 0

    @property
    def token(self) -> str:
        return "{" + self.name + "}"


@dataclass(frozen=True)
class ActionTemplate:
    """Compiled action text: literal segments interleaved with placeholders."""
    source: str
    parts: tuple[TextSegment | Placeholder, ...] = field(default_factory=tuple)

    @property
    def placeholders(self) -> list[str]:
        names: list[str] = []
        for part in self.parts:
            if isinstance(part, Placeholder) and part.name not in names:
                names.append(part.name)
        return names


def _is_identifier(name: str) -> bool:
    return bool(name) and (name[0].isalpha() or name[0] == "_") and all(
        c.isalnum() or c == "_" for c in name
    )


def parse_action(text: str) -> ActionTemplate:
    """Compile action text into a template.

    Raises:
        ParseError: for unbalanced braces or placeholders that are not
        identifiers.
    """
    if text is None:
        raise ParseError("Action text is required", "", 0, "")

    parts: list[TextSegment | Placeholder] = []
    buffer: list[str] = []
    pos = 0
    length = len(text)

    def flush() -> None:
        if buffer:
            parts.append(TextSegment("".join(buffer)))
            buffer.clear()

    while pos < length:
        ch = text[pos]
        if ch == "{":
            if text.startswith("{{", pos):
                buffer.append("{")
                pos += 2
                continue
            end = text.find("}", pos + 1)
            if end == -1:
                raise ParseError("Unclosed placeholder", text[pos:], pos, text)
            name = text[pos + 1:end].strip()
            if not _is_identifier(name):
                raise ParseError("Invalid placeholder name", text[pos:end + 1], pos, text)
            flush()
            parts.append(Placeholder(name, pos))
            pos = end + 1
            continue
        if ch == "}":
            if text.startswith("}}", pos):
                buffer.append("}")
                pos += 2
                continue
            raise ParseError("Unmatched '}'", ch, pos, text)
        buffer.append(ch)
        pos += 1

    flush()
    return ActionTemplate(source=text, parts=tuple(parts))
