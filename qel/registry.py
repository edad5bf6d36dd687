"""
qel named value formats.

A format is a name (e.g., "email") bound either to a regular expression or to a
predicate. String validators reference formats by name through .format(name); the name
is resolved against a FormatRegistry when the validator is built, so an unknown name
fails right there and not at parse time.

Registries
- FormatRegistry: a small mutable table, name -> matcher.
- formats: the process-wide default registry, pre-populated with the built-ins below.
  Register custom formats before building validators that reference them.

Built-ins
- uuid      8-4-4-4-12 hexadecimal digits
- email     local@domain.tld
- date      YYYY-MM-DD (years 1900 to 2099)
- time      HH:MM (24h)
- datetime  "YYYY-MM-DD HH:MM"

Example
    >>> register_format("semver", r"\\d+\\.\\d+\\.\\d+")
    >>> formats.matches("semver", "1.2.3")
    True
"""
import re
from collections.abc import Callable

_DATE = r"(19|20)\d\d-(?:0[1-9]|1[012])-(?:0[1-9]|[12][0-9]|3[01])"
_TIME = r"(?:[01][0-9]|2[0-3]):[0-5][0-9]"


class FormatRegistry:
    """
    mapping from format name to matcher.

    a matcher is a compiled re.Pattern (searched in the value, so anchor it to match
    the whole value), a pattern string (compiled on registration), or a predicate
    returning a truthy value for valid input. registering an existing name replaces the
    previous entry.
    """

    def __init__(self, matchers=(), /):
        self._matchers = {}
        for name, matcher in dict(matchers).items():
            self.register(name, matcher)

    def register(self, name, matcher, /):
        if not isinstance(name, str) or not name:
            raise TypeError("register() name must be a non-empty string")
        if isinstance(matcher, str):
            matcher = re.compile(matcher)
        if not isinstance(matcher, re.Pattern) and not callable(matcher):
            raise TypeError("register() matcher must be a regular expression or a callable")
        self._matchers[name] = matcher

    def lookup(self, name, /):
        """
        return the matcher registered under name.

        raises KeyError when the format is unknown.
        """
        return self._matchers[name]

    def matches(self, name, value, /):
        return self.test(self.lookup(name), value)

    @staticmethod
    def test(matcher, value, /):
        """
        apply a matcher to a value: patterns must match somewhere in the value, predicates
        must return a truthy value.
        """
        if isinstance(matcher, re.Pattern):
            return matcher.search(value) is not None
        return bool(matcher(value))

    def __contains__(self, name):
        return name in self._matchers

    def __iter__(self):
        return iter(self._matchers)

    def __len__(self):
        return len(self._matchers)

    def __repr__(self):
        return f"FormatRegistry({', '.join(self._matchers)})"


formats = FormatRegistry({
    "uuid": r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}\Z",
    "email": r"^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\Z",
    "date": "^" + _DATE + r"\Z",
    "time": "^" + _TIME + r"\Z",
    "datetime": "^" + _DATE + " " + _TIME + r"\Z",
})


def register_format(name: str, matcher: re.Pattern | str | Callable[[str], bool], /) -> None:
    """Register (or replace) a format in the default registry."""
    formats.register(name, matcher)


def get_format(name: str, /) -> re.Pattern | Callable[[str], bool]:
    """Return the matcher of a format from the default registry (KeyError if unknown)."""
    return formats.lookup(name)


__all__ = (
    "FormatRegistry",
    "formats",
    "register_format",
    "get_format",
)
