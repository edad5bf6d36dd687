"""
qel internal helpers.

- Unset: sentinel for "not provided", for parameters where None is a real value
  (a default, an environment value, a process option). It is falsy, prints as "Unset",
  can take part in isinstance unions (str | Unset) and cannot be subclassed.
- coalesce(value, default): Unset becomes default; everything else, None included, is kept.
- mirror(name): read-only property over self._<name>; containers come back as fresh
  copies so builder state cannot be mutated from outside.

    >>> coalesce(Unset, "fallback")
    'fallback'
    >>> coalesce(0, "fallback")
    0
"""
import functools
from collections.abc import Mapping, Sequence, Set
from typing import final


@final
class UnsetType:

    @functools.cache
    def __new__(cls):
        return super().__new__(cls)

    def __or__(self, other, /):
        try:
            return other | type(self)
        except TypeError:
            return NotImplemented

    __ror__ = __or__

    def __bool__(self):
        return False

    def __repr__(self):
        return "Unset"

    def __init_subclass__(cls, **options):
        raise TypeError("type 'UnsetType' is not an acceptable base type")


Unset = UnsetType()


def coalesce(value, default=None, /):
    return default if value is Unset else value


def _copy(value):
    if isinstance(value, Mapping):
        return {key: _copy(item) for key, item in value.items()}
    if isinstance(value, Set):
        return {_copy(item) for item in value}
    if isinstance(value, Sequence) and not isinstance(value, str):
        return [_copy(item) for item in value]
    return value


def mirror(name, /):
    """
    property returning a copy of self._<name>.

        class Parser:
            aliases = mirror("aliases")
    """
    if not isinstance(name, str):
        raise TypeError("mirror() argument must be a string")
    attribute = f"_{name}"

    def getter(self):
        return _copy(getattr(self, attribute))

    getter.__name__ = getter.__qualname__ = name
    return property(getter)


__all__ = (
    "UnsetType",
    "Unset",
    "coalesce",
    "mirror",
)
