"""
qel usage and help rendering.

Wrapping helpers
- split_sentence(sentence, max_length): greedy word wrap of one line.
- split_paragraph(paragraph, max_length): wrap every line of a paragraph; one leading and
  one trailing newline are dropped, inner blank lines are kept.
- format_bullet(message, max_length): wrap a generated annotation as "  - first line"
  followed by "    continuation" lines.

UsageRenderer
- Builds the plain-text usage and help blocks of a Parser, then prints them on stderr
  through rich with a palette (overridable with __styles__ in __main__).

Layout
    Usage: <script> [ARGUMENTS]

      -e, --email EMAIL (*)    user email
      --(no-)flag              (set by default)
      -h, --help               print help

Help adds the wrapped description on top and an EXAMPLES section at the bottom.
"""
import re
from collections import defaultdict

from rich.console import Console
from rich.text import Text

from .utils import Unset

INDENT = 2
GAP = 4
HELP_DESCRIPTION = "print help"
VERSION_DESCRIPTION = "print version"


def split_sentence(sentence, max_length=Unset):
    """
    wrap a single line (no newline inside) into lines of at most max_length characters.

    a word longer than max_length stays whole on its own line.
    """
    if not max_length or len(sentence) <= max_length:
        return [sentence]
    lines = []
    current = ""
    for word in sentence.split():
        if current and len(current) + len(word) > max_length:
            lines.append(current.strip())
            current = ""
        current += f"{word} "
    if current:
        lines.append(current.strip())
    return lines


def split_paragraph(paragraph, max_length=Unset):
    if paragraph.startswith("\n"):
        paragraph = paragraph[1:]
    if paragraph.endswith("\n"):
        paragraph = paragraph[:-1]
    lines = []
    for sentence in paragraph.split("\n"):
        if sentence == "":
            lines.append(sentence)
            continue
        lines.extend(split_sentence(sentence, max_length))
    return lines


def format_bullet(message, max_length=Unset):
    """
    wrap a generated usage annotation (enum values, environment variable, ...).

    the first line is prefixed with "  - ", the others are indented with four spaces.
    """
    return [
        f"  - {line}" if index == 0 else f"    {line}"
        for index, line in enumerate(split_sentence(message, max_length))
    ]


class UsageRenderer:
    """
    usage and help renderer of one Parser.

    the renderer only reads the parser (handlers, aliases, script name, description,
    examples, version, help/version flags and max_length); it never mutates it.
    """

    def __init__(self, parser, /, *, console=Unset):
        self._parser = parser
        self._console = Console(stderr=True) if console is Unset else console

    @property
    def max_length(self):
        """
        configured maximum line length, shrunk to the terminal width when stderr is a
        terminal narrower than that.
        """
        length = self._parser.max_length
        if self._console.is_terminal and 0 < self._console.width < length:
            return self._console.width
        return length

    def entries(self):
        """
        return (name line, handler) pairs in declaration order, followed by (name line,
        text) pairs for the help and version flags the argument mapping does not declare itself.
        """
        parser = self._parser
        aliases = parser.aliases_map()
        entries = []
        for name, handler in parser.handlers.items():
            names = self._sort([name, *aliases.get(name, [])])
            validator = handler.validator
            if validator.is_flag and validator.allows_negation:
                names = [f"--(no-){item[2:]}" if item.startswith("--") else item for item in names]
            line = ", ".join(names)
            if not validator.is_flag:
                line += f" {validator.get_value_text()}"
            if handler.allow_many:
                line += " (+)"
            if validator.is_required:
                line += " (*)"
            entries.append((line, handler))
        if flags := [name for name in parser.help_flags if name not in parser.spec]:
            entries.append((", ".join(self._sort(flags)), HELP_DESCRIPTION))
        if parser.version is not Unset:
            if flags := [name for name in parser.version_flags if name not in parser.spec]:
                entries.append((", ".join(self._sort(flags)), VERSION_DESCRIPTION))
        return entries

    def render_usage(self):
        """return the usage block (without trailing newline)."""
        max_length = self.max_length
        lines = [f"Usage: {self._parser.script_name} [ARGUMENTS]", ""]
        entries = self.entries()
        column = INDENT + max((len(line) for line, _ in entries), default=0) + GAP
        width = max(max_length - column, 1)
        for line, handler in entries:
            if isinstance(handler, str):
                usage = split_sentence(handler, width)
            else:
                usage = handler.validator.get_usage(width, handler.allow_many)
            head = " " * INDENT + line
            if not usage:
                lines.append(head)
                continue
            lines.append(head.ljust(column) + usage[0])
            lines.extend((" " * column + item).rstrip() for item in usage[1:])
        return "\n".join(lines)

    def render_help(self):
        """return the help block: description, usage, then examples."""
        parser = self._parser
        max_length = self.max_length
        lines = []
        if parser.description:
            lines.extend(split_paragraph(parser.description, max_length))
            lines.append("")
        lines.append(self.render_usage())
        if parser.examples:
            lines.extend(["", "EXAMPLES:", ""])
            for example in parser.examples:
                lines.extend(split_sentence(f"  {parser.script_name} {example}", max_length))
        return "\n".join(lines)

    def print_usage(self, error=Unset):
        """print the fault line (when given), a blank line and the usage block on stderr."""
        if error:
            self._console.print(error)
            self._console.print()
        self._console.print(self._style(self.render_usage()), soft_wrap=True)

    def print_help(self):
        self._console.print(self._style(self.render_help()), soft_wrap=True)

    @staticmethod
    def _sort(names):
        shorts = [name for name in names if not name.startswith("--")]
        longs = [name for name in names if name.startswith("--")]
        return shorts + longs

    def _style(self, plain):
        styles = defaultdict(str, {
            "usage-label": "bold #00E6FF",
            "program-name": "bold #FF4D94",
            "option-name": "bold #00E6FF",
            "metavar": "bold #FFD600",
            "marker": "#9CA3AF",
            "bullet": "#9CA3AF",
            "examples-label": "bold #22C55E",
        } | getattr(__import__("__main__"), "__styles__", {}))

        text = Text(plain)
        text.highlight_regex(re.compile(r"^Usage:", re.M), styles["usage-label"])
        text.highlight_regex(re.compile(r"^EXAMPLES:", re.M), styles["examples-label"])
        text.highlight_regex(re.compile(rf"(?<=^Usage: ){re.escape(self._parser.script_name)}", re.M), styles["program-name"])
        text.highlight_regex(re.compile(r"(?<=^  )-[^\s,]+(?:, -[^\s,]+)*", re.M), styles["option-name"])
        text.highlight_regex(re.compile(r"(?<=[\w)] )[A-Z][A-Z0-9_]*(?= |$)", re.M), styles["metavar"])
        text.highlight_regex(re.compile(r"\((?:\+|\*)\)", re.M), styles["marker"])
        text.highlight_regex(re.compile(r"^\s+- ", re.M), styles["bullet"])
        return text


__all__ = (
    "UsageRenderer",
    "split_sentence",
    "split_paragraph",
    "format_bullet",
)
