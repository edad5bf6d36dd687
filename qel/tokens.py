"""
qel command-line tokenizer (used by shell completion).

Rules
1. whitespace separates tokens, except inside quotes or a $( ... ) region.
2. inside single quotes every character is literal.
3. outside single quotes a backslash escapes the next character; an escaped '$' keeps
   its backslash so that it is not mistaken for a variable later on.
4. quote context can switch inside a token: all'one'"token" is the single token
   "allonetoken".
5. $( opens a subshell region closed by the balancing ')'; the region (wrapper included)
   stays inside the current token, whatever it contains.
6. a quote right after "--name=" is kept, with its closing quote, so that
   split_assignments() can later split the token and recover the quoting.

Each Token records where it starts in the command line, the quote character that opened
it (if any) and whether the closing quote was seen, which is what completion needs to
quote candidates the same way the user started typing them.

    >>> tokenize('echo "User: $(whoami)"')
    [Token(content='echo', index=0, quote=None, closed=False),
     Token(content='User: $(whoami)', index=5, quote='"', closed=True)]
"""
from typing import NamedTuple

QUOTES = ("'", '"')


class Token(NamedTuple):
    content: str
    index: int
    quote: str | None = None
    closed: bool = False


def tokenize(cmdline: str) -> list[Token]:
    """Split a shell-style command line into tokens."""
    if not isinstance(cmdline, str):
        raise TypeError("tokenize() argument must be a string")

    tokens = []
    current = ""
    start = None
    quote = None  # currently open quote
    main = None  # quote that opened the token
    literal = False  # open quote kept in the content (--name="...)
    closed = False
    escaped = False
    depth = 0

    def flush():
        nonlocal current, start, quote, main, literal, closed
        if current or main is not None or quote is not None:
            tokens.append(Token(current, start, main, closed))
        current, start, quote, main, literal, closed = "", None, None, None, False, False

    index = 0
    while index < len(cmdline):
        char = cmdline[index]

        if char.isspace() and not escaped and quote is None and depth == 0:
            flush()
            index += 1
            continue
        if start is None:
            start = index

        if char == "\\" and not escaped:
            if quote == "'":
                current += char
            else:
                escaped = True
            index += 1
            continue

        if escaped:
            current += "\\$" if char == "$" else char
            escaped = False
            index += 1
            continue

        if char == "$" and cmdline[index + 1:index + 2] == "(" and quote != "'":
            depth += 1
            current += "$("
            index += 2
            continue

        if depth > 0:
            if char == "(":
                depth += 1
            elif char == ")":
                depth -= 1
            current += char
            index += 1
            continue

        if char in QUOTES:
            if quote is None:
                if main is None and not current:
                    main = char
                elif main is None and current.startswith("--") and current.endswith("="):
                    literal = True
                    current += char
                quote = char
            elif char == quote:
                quote = None
                if literal:
                    current += char
                    literal = False
                elif main is not None:
                    closed = True
            else:
                current += char
            index += 1
            continue

        current += char
        index += 1

    if escaped:
        current += "\\"
    flush()
    return tokens


def split_assignments(tokens: list[Token]) -> list[Token]:
    """
    Split every "--name=value" token into a name token and a value token.

    The value token starts right after the '='; one level of quotes around the value is
    removed and recorded in the token (quote, closed).
    """
    result = []
    for token in tokens:
        name, separator, value = token.content.partition("=")
        if not token.content.startswith("--") or not separator:
            result.append(token)
            continue
        result.append(Token(name, token.index))
        quote, closed = None, False
        if value[:1] in QUOTES:
            quote, value = value[0], value[1:]
            if value[-1:] in QUOTES:
                value, closed = value[:-1], True
        result.append(Token(value, token.index + len(name) + 1, quote, closed))
    return result


__all__ = (
    "Token",
    "tokenize",
    "split_assignments",
)
