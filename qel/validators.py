r"""
qel validators: chainable value constraints for command-line arguments.

Overview
- Variants
  • StringValidator: trimmed text, with regexp/length/enum/format constraints.
  • NumberValidator: int or float, with range/sign/integer constraints.
  • PathValidator: file or directory path, with existence checks, creation, '-' for
    stdin/stdout, and optional reading of the file content (text or JSON).
  • FlagValidator: boolean switch, with --no-<name> negation and a counting mode.

- Factories
  • string(), number(), path(), flag(): build a validator, optionally with a default.

- Chaining
  Every builder method returns the validator itself, so a whole argument is declared in
  one expression:
      >>> string().format("email").required().description("user email")

Constraint ordering
- Constraints run in the order they were declared.
- Declaring the same (non-custom) constraint twice replaces the first declaration in
  place: .min(2).max(9).min(3) runs min(3) then max(9).
- Custom constraints always append, so .custom(a).custom(b) runs both.
- A custom constraint returning STOP (or False) skips the remaining constraints without
  failing; the value is still mapped and returned.

Value pipeline (validate)
1. raw value, else the environment variable (env), else the default.
2. missing and required -> MissingRequiredOptionError.
3. parse (text -> typed), run constraints, apply the map function.
4. any failure in step 3 -> InvalidOptionValueError naming the argument, the value, the
   environment variable it came from (if any) and the reason (or the error_message()
   override).

Introspection
- get_usage(): human lines used by the help renderer.
- describe_usage(): machine-readable descriptor used by describe-usage mode.
- clone(): independent copy; chaining on either side never affects the other.
"""
import copy
import functools
import json as jsonlib
import math
import os
import re
import sys
from enum import StrEnum
from typing import NamedTuple, final

from .faults import InvalidOptionValueError, MissingRequiredOptionError
from .registry import FormatRegistry, formats
from .usage import split_paragraph, format_bullet
from .utils import Unset, coalesce

MESSAGE_MULTIPLE = "it can be set multiple times"
MESSAGE_SET_BY_DEFAULT = "set by default"
DEFAULT_VALUE_TEXT = "VAL"
DEFAULT_ENUM_MESSAGE = "it can be one of"

_INTEGER = re.compile(r"[-+]?\d+")


class ConstraintType(StrEnum):
    """
    closed set of constraint tags.

    every tag but CUSTOM is unique within a validator (re-declaring replaces).
    """
    CUSTOM            = "custom"
    ENUM              = "enum"
    FORMAT            = "format"
    IS_INT            = "integer"
    MIN               = "min"
    MAX               = "max"
    IS_POSITIVE       = "positive"
    IS_NEGATIVE       = "negative"
    REGEXP            = "regexp"
    CHECK_PATH        = "check-path"
    CHECK_PARENT_DIR  = "check-parent-dir"
    ENSURE_PATH       = "ensure-path"
    ENSURE_PARENT_DIR = "ensure-parent-dir"


class Constraint(NamedTuple):
    """
    one step of a validator.

    - type: ConstraintType tag.
    - predicate: raises on failure; may return STOP to end the chain. Internal
      predicates are called with (validator, value) so that clones check their own
      state, user predicates with (value).
    - description: optional line shown in usage (e.g., the enum values).
    - internal: True for predicates taking the validator.
    """
    type: ConstraintType
    predicate: object
    description: object = Unset
    internal: bool = False


@final
class StopType:
    """
    sentinel returned by a custom constraint to skip the remaining constraints.
    """

    @functools.cache
    def __new__(cls):
        return super().__new__(cls)

    def __bool__(self):
        return False

    def __repr__(self):
        return "STOP"

    def __init_subclass__(cls, **options):
        raise TypeError("type 'StopType' is not an acceptable base type")


STOP = StopType()


def _is_number(value):
    return isinstance(value, int | float) and not isinstance(value, bool)


class Validator:
    """
    base of every validator variant.

    state
    - _default: default value (variant primitive) or Unset.
    - _required: whether a value must resolve from argv, env or default.
    - _env: environment variable consulted when no raw value is given.
    - _description: help text (stripped).
    - _error_message: override for the reason part of invalid-value diagnostics.
    - _constraints: ordered list of Constraint.
    - _mapper: function applied to the validated value.
    """
    __typename__ = "string"
    is_flag = False

    def __init__(self, default=Unset, /):
        self._default = self._sanitize_default(default)
        self._required = False
        self._env = Unset
        self._description = Unset
        self._error_message = Unset
        self._value_text = Unset
        self._completer = Unset
        self._mapper = Unset
        self._constraints = []

    # --- builders -------------------------------------------------------------------

    def default(self, value, /):
        """set (or, with None/Unset, clear) the default value."""
        self._default = self._sanitize_default(value)
        return self

    def env(self, name, /):
        """read the value from environment variable *name* when none is given."""
        if not isinstance(name, str) or not name:
            raise TypeError("env() argument must be a non-empty string")
        self._env = name
        return self

    def description(self, text, /):
        if not isinstance(text, str):
            raise TypeError("description() argument must be a string")
        if text := text.strip():
            self._description = text
        return self

    def custom(self, predicate, /):
        """
        append a custom constraint.

        the predicate receives the parsed value; it fails by raising (the exception text
        becomes the reason) and may return STOP or False to skip the remaining steps.
        """
        if not callable(predicate):
            raise TypeError("custom() argument must be callable")
        self._constrain(ConstraintType.CUSTOM, predicate)
        return self

    def map(self, function, /):
        """transform the value once every constraint passed."""
        if not callable(function):
            raise TypeError("map() argument must be callable")
        self._mapper = function
        return self

    def clone(self):
        """
        return an independent copy.

        constraints are copied as a list (the records themselves are immutable), so
        adding or replacing constraints on one side never leaks to the other.
        """
        clone = copy.copy(self)
        clone._constraints = list(self._constraints)
        return clone

    # --- introspection --------------------------------------------------------------

    @property
    def is_required(self):
        return self._required

    @property
    def default_value(self):
        return coalesce(self._default)

    @property
    def env_name(self):
        return coalesce(self._env)

    @property
    def choices(self):
        """(value, description) pairs for enumerated validators, else an empty list."""
        return []

    @property
    def completer(self):
        return coalesce(self._completer)

    def get_description(self):
        return coalesce(self._description, "")

    def get_value_text(self):
        return coalesce(self._value_text, DEFAULT_VALUE_TEXT)

    def get_usage(self, max_length=Unset, allow_many=False):
        """
        return the help lines of this validator.

        layout
        - description (wrapped), followed by "(default: X)" or, for flags set by default,
          "(set by default)".
        - one "  - " bullet per described constraint, then "it can be set multiple
          times" when allow_many, then the environment variable.
        """
        usage = []
        if description := self._summary(max_length):
            usage.extend(split_paragraph(description, max_length))
        for constraint in self._constraints:
            if constraint.description:
                usage.extend(format_bullet(constraint.description, max_length))
        if allow_many:
            usage.extend(format_bullet(MESSAGE_MULTIPLE, max_length))
        if self._env:
            usage.extend(format_bullet(f"it can be passed as '{self._env}' environment variable", max_length))
        return usage

    def describe_usage(self, name, allow_many=False, aliases=()):
        """
        return the usage descriptor of this validator registered under *name*.

        keys: name, type, default (only when set), value_text, values, format, required,
        allow_many, env, aliases, description, short_description, allow_negation.
        """
        item = {"name": name, "type": self.__typename__}
        if self._default is not Unset:
            item["default"] = self._default
        item |= {
            "value_text": self.get_value_text(),
            "values": [value for value, _ in self.choices],
            "format": "",
            "required": self._required,
            "allow_many": allow_many,
            "env": coalesce(self._env, ""),
            "aliases": list(aliases),
            "description": coalesce(self._description, ""),
            "short_description": coalesce(self._description, "").split("\n")[0],
            "allow_negation": False,
        }
        return item

    # --- validation -----------------------------------------------------------------

    def validate(self, raw, name, previous=Unset, /):
        """
        validate one raw value for argument *name*.

        parameters
        - raw: the text from the command line, or None to fall back to env/default.
        - name: argument name used in diagnostics.
        - previous: the value accumulated so far (multi-valued arguments); available to
          subclasses, unused by the built-in variants.

        returns the mapped value, or None when nothing resolved and the argument is
        optional.
        """
        if raw is not None and not isinstance(raw, str):
            raise TypeError("validate() raw value must be a string or None")
        value, source = raw, Unset
        if value is None and self._env is not Unset:
            if (value := os.environ.get(self._env)) is not None:
                source = self._env
        if value is None and self._default is not Unset:
            value = self._default
        if value is None:
            if self._required:
                raise MissingRequiredOptionError(f"Argument {name} is required")
            return None

        text = value if isinstance(value, str) else self._stringify(value)
        try:
            value = self._parse(text)
            for constraint in self._constraints:
                if constraint.internal:
                    outcome = constraint.predicate(self, value)
                else:
                    outcome = constraint.predicate(value)
                if outcome is STOP or outcome is False:
                    break
            return self._finish(value)
        except Exception as exception:
            raise InvalidOptionValueError(self._diagnostic(name, text, source, exception)) from exception

    # --- internals ------------------------------------------------------------------

    def _constrain(self, type, predicate, description=Unset, *, internal=False):
        constraint = Constraint(type, predicate, description, internal)
        if type is not ConstraintType.CUSTOM:
            for index, existing in enumerate(self._constraints):
                if existing.type is type:
                    self._constraints[index] = constraint
                    return
        self._constraints.append(constraint)

    def _sanitize_default(self, value):
        if value is None or value is Unset:
            return Unset
        if not self._accepts(value):
            raise TypeError(f"default value must be a {self.__typename__}")
        return value

    def _accepts(self, value):
        return isinstance(value, str)

    def _stringify(self, value):
        return str(value)

    def _parse(self, text):
        return text

    def _finish(self, value):
        return value if self._mapper is Unset else self._mapper(value)

    def _summary(self, max_length):
        summary = Unset
        if self._default:
            summary = f"(default: {self._default})"
        if self._description is Unset:
            return summary
        description = "\n".join(split_paragraph(self._description, max_length))
        return description if summary is Unset else f"{description} {summary}"

    def _diagnostic(self, name, text, source, exception):
        message = f"Invalid {'flag' if self.is_flag else 'argument'} value: {name} {text}"
        if source is not Unset:
            message += f" (env[{source}])"
        if reason := coalesce(self._error_message, str(exception).strip()):
            message += f" ({reason})"
        return message

    def __rich_repr__(self):
        yield "default", coalesce(self._default)
        yield "required", self._required
        yield "env", coalesce(self._env)
        yield "constraints", [constraint.type.value for constraint in self._constraints]

    def __repr__(self):
        return f"{type(self).__name__}({', '.join('%s=%r' % pair for pair in self.__rich_repr__())})"


class ValueValidator(Validator):
    """
    validators of arguments that take a value (string, number, path).
    """

    def required(self, flag=True, /):
        if not isinstance(flag, bool):
            raise TypeError("required() argument must be a boolean")
        self._required = flag
        return self

    def error_message(self, text, /):
        """replace the reason of invalid-value diagnostics with *text*."""
        if not isinstance(text, str):
            raise TypeError("error_message() argument must be a string")
        if text := text.strip():
            self._error_message = text
        return self

    def value_text(self, label, /):
        """label shown after the argument names in usage (default: VAL)."""
        if label:
            self._value_text = label
        return self

    def complete(self, function, /):
        """
        install a custom completion function.

        the function receives the partial value being completed and a zero-argument
        callable returning the built-in candidates; it may be a coroutine function.
        """
        if not callable(function):
            raise TypeError("complete() argument must be callable")
        self._completer = function
        return self


class StringValidator(ValueValidator):
    """
    text argument. values are trimmed unless .trim(False).
    """
    __typename__ = "string"

    def __init__(self, default=Unset, /, *, registry=formats):
        super().__init__(default)
        if not isinstance(registry, FormatRegistry):
            raise TypeError("string() registry must be a FormatRegistry")
        self._registry = registry
        self._trim = True
        self._format = Unset
        self._enum = Unset

    def trim(self, flag=True, /):
        if not isinstance(flag, bool):
            raise TypeError("trim() argument must be a boolean")
        self._trim = flag
        return self

    def regexp(self, pattern, /):
        """the value must contain a match of *pattern* (str or compiled)."""
        if isinstance(pattern, str):
            pattern = re.compile(pattern)
        if not isinstance(pattern, re.Pattern):
            raise TypeError("regexp() argument must be a regular expression")

        def predicate(self, value):
            if pattern.search(value) is None:
                raise ValueError(f"it should match {pattern.pattern}")

        self._constrain(ConstraintType.REGEXP, predicate, internal=True)
        return self

    def min(self, length, /):
        if not _is_number(length):
            raise TypeError("min() argument must be a number")
        bound = math.floor(length)

        def predicate(self, value):
            if len(value) < bound:
                raise ValueError(f"it should have a length >= {length}")

        self._constrain(ConstraintType.MIN, predicate, internal=True)
        return self

    def max(self, length, /):
        if not _is_number(length):
            raise TypeError("max() argument must be a number")

        def predicate(self, value):
            if len(value) > length:
                raise ValueError(f"it should have a length <= {length}")

        self._constrain(ConstraintType.MAX, predicate, internal=True)
        return self

    def enum(self, values, message=Unset, /):
        """
        the value must be one of *values* (exact string equality).

        each entry is a string or a (value, description) pair; descriptions are shown
        by shell completion. *message* prefixes the values in usage (default: "it can be
        one of").
        """
        if isinstance(values, str) or not isinstance(values, list | tuple):
            raise TypeError("enum() argument must be a list")
        if not values:
            raise ValueError("enum() argument cannot be empty")
        choices = []
        for entry in values:
            if isinstance(entry, str):
                choices.append((entry, Unset))
            elif isinstance(entry, tuple) and len(entry) == 2 and isinstance(entry[0], str):
                choices.append(entry)
            else:
                raise TypeError(f"enum() values must be strings or (value, description) pairs ({entry!r})")
        names = [value for value, _ in choices]
        listing = f"[{', '.join(names)}]"
        message = message.strip() if isinstance(message, str) and message.strip() else DEFAULT_ENUM_MESSAGE

        def predicate(self, value):
            if value not in names:
                raise ValueError(f"it should be one of {listing}")

        self._enum = choices
        self._constrain(ConstraintType.ENUM, predicate, f"{message} {listing}", internal=True)
        return self

    def format(self, name, /):
        """the value must match the named format of this validator's registry."""
        if not isinstance(name, str):
            raise TypeError("format() argument must be a string")
        if name not in self._registry:
            raise ValueError(f"Format '{name}' is not supported")
        matcher = self._registry.lookup(name)

        def predicate(self, value):
            if not FormatRegistry.test(matcher, value):
                raise ValueError(f"it should be a valid {name}")

        self._format = name
        self._constrain(ConstraintType.FORMAT, predicate, internal=True)
        return self

    @property
    def choices(self):
        return [(value, coalesce(description)) for value, description in coalesce(self._enum, [])]

    def get_value_text(self):
        if self._value_text:
            return self._value_text
        if self._format:
            return self._format.upper()
        return super().get_value_text()

    def describe_usage(self, name, allow_many=False, aliases=()):
        item = super().describe_usage(name, allow_many, aliases)
        item["format"] = coalesce(self._format, "")
        return item

    def _parse(self, text):
        return text.strip() if self._trim else text


class NumberValidator(ValueValidator):
    """
    numeric argument. "12" parses to int 12, "1.5" to float 1.5.
    """
    __typename__ = "number"

    def positive(self, flag=True, /):
        if not isinstance(flag, bool):
            raise TypeError("positive() argument must be a boolean")

        def predicate(self, value):
            if value <= 0 and flag:
                raise ValueError("it should be a positive number")
            if value > 0 and not flag:
                raise ValueError("it should not be a positive number")

        self._constrain(ConstraintType.IS_POSITIVE, predicate, internal=True)
        return self

    def negative(self, flag=True, /):
        if not isinstance(flag, bool):
            raise TypeError("negative() argument must be a boolean")

        def predicate(self, value):
            if value >= 0 and flag:
                raise ValueError("it should be a negative number")
            if value < 0 and not flag:
                raise ValueError("it should not be a negative number")

        self._constrain(ConstraintType.IS_NEGATIVE, predicate, internal=True)
        return self

    def integer(self):
        def predicate(self, value):
            if isinstance(value, int):
                return
            if not math.isfinite(value) or not value.is_integer():
                raise ValueError("it should be an integer")

        self._constrain(ConstraintType.IS_INT, predicate, internal=True)
        return self

    def min(self, bound, /):
        if not _is_number(bound):
            raise TypeError("min() argument must be a number")

        def predicate(self, value):
            if value < bound:
                raise ValueError(f"it should be a number >= {bound}")

        self._constrain(ConstraintType.MIN, predicate, internal=True)
        return self

    def max(self, bound, /):
        if not _is_number(bound):
            raise TypeError("max() argument must be a number")

        def predicate(self, value):
            if value > bound:
                raise ValueError(f"it should be a number <= {bound}")

        self._constrain(ConstraintType.MAX, predicate, internal=True)
        return self

    def get_value_text(self):
        return self._value_text or "NUM"

    def _accepts(self, value):
        return _is_number(value)

    def _parse(self, text):
        text = text.strip()
        if _INTEGER.fullmatch(text):
            return int(text)
        try:
            value = float(text)
        except ValueError:
            raise ValueError("it should be a number") from None
        if math.isnan(value):
            raise ValueError("it should be a number")
        return value


class PathValidator(ValueValidator):
    """
    file or directory argument.

    - '-' is rejected unless .allow_std() (never for directories); when accepted, the
      remaining constraints are skipped and '-' is kept (or read from stdin by .read()).
    - .read() replaces the value with the file content after validation.
    """
    __typename__ = "file"

    def __init__(self, default=Unset, /):
        super().__init__(default)
        self._trim = True
        self._directory = False
        self._allow_std = False
        self._read = False
        self._json = False
        self._trim_content = False
        self._constrain(ConstraintType.CUSTOM, PathValidator._screen, internal=True)

    def trim(self, flag=True, /):
        if not isinstance(flag, bool):
            raise TypeError("trim() argument must be a boolean")
        self._trim = flag
        return self

    def directory(self, flag=True, /):
        if not isinstance(flag, bool):
            raise TypeError("directory() argument must be a boolean")
        self._directory = flag
        return self

    def allow_std(self, flag=True, /):
        """accept '-' as a stand-in for stdin/stdout."""
        if not isinstance(flag, bool):
            raise TypeError("allow_std() argument must be a boolean")
        self._allow_std = flag
        return self

    def read(self, *, json=False, trim=False):
        """
        replace the value with the content of the file ('-' reads stdin).

        - json: parse the content as JSON (stdin content included).
        - trim: strip the content before parsing.
        """
        self._read = True
        self._json = bool(json)
        self._trim_content = bool(trim)
        return self

    def check(self, should_exist=True, /):
        if not isinstance(should_exist, bool):
            raise TypeError("check() argument must be a boolean")
        self._constrain(
            ConstraintType.CHECK_PATH,
            functools.partial(PathValidator._verify, should_exist=should_exist),
            internal=True,
        )
        return self

    def check_parent(self):
        self._constrain(ConstraintType.CHECK_PARENT_DIR, PathValidator._verify_parent, internal=True)
        return self

    def ensure(self):
        """create the directory, or the file and its parent directories, when missing."""
        self._constrain(ConstraintType.ENSURE_PATH, PathValidator._create, internal=True)
        return self

    def ensure_parent(self):
        self._constrain(ConstraintType.ENSURE_PARENT_DIR, PathValidator._create_parent, internal=True)
        return self

    def get_value_text(self):
        if self._value_text:
            return self._value_text
        return "DIR" if self._directory else "FILE"

    def describe_usage(self, name, allow_many=False, aliases=()):
        item = super().describe_usage(name, allow_many, aliases)
        item["type"] = "dir" if self._directory else "file"
        return item

    @property
    def is_directory(self):
        return self._directory

    def _parse(self, text):
        return text.strip() if self._trim else text

    def _finish(self, value):
        if self._read:
            value = self._load(value)
        return super()._finish(value)

    def _screen(self, value):
        if value == "":
            raise ValueError("cannot be empty")
        if value == "-":
            if not self._allow_std or self._directory:
                raise ValueError("'-' is not allowed")
            return STOP

    def _verify(self, value, *, should_exist):
        kind = "directory" if self._directory else "file"
        exists = self._exists(value, self._directory)
        if should_exist and not exists:
            raise ValueError(f"{kind} should exist")
        if not should_exist and exists:
            raise ValueError(f"{kind} should not exist")

    def _verify_parent(self, value):
        if not self._exists(self._parent(value), True):
            raise ValueError("parent directory should exist")

    def _create(self, value):
        if self._exists(value, self._directory):
            return
        if self._directory:
            try:
                os.makedirs(value, exist_ok=True)
            except OSError as error:
                raise ValueError(f"could not create directory ({error.strerror})") from None
            return
        self._create_parent(value)
        try:
            with open(value, "a"):
                pass
        except OSError as error:
            raise ValueError(f"could not create file ({error.strerror})") from None

    def _create_parent(self, value):
        if self._exists(parent := self._parent(value), True):
            return
        try:
            os.makedirs(parent, exist_ok=True)
        except OSError as error:
            raise ValueError(f"could not create parent directory ({error.strerror})") from None

    def _load(self, value):
        if value == "-":
            content = sys.stdin.read()
        else:
            try:
                with open(value) as file:
                    content = file.read()
            except OSError:
                raise ValueError("could not read file content") from None
        if self._trim_content:
            content = content.strip()
        if self._json:
            try:
                return jsonlib.loads(content)
            except ValueError:
                raise ValueError("not a valid json file") from None
        return content

    @staticmethod
    def _parent(entry):
        return os.path.dirname(entry) or os.getcwd()

    @staticmethod
    def _exists(entry, directory):
        return os.path.isdir(entry) if directory else os.path.exists(entry)


class FlagValidator(Validator):
    """
    boolean switch.

    - --<name> sets true, --no-<name> sets false (unless .allow_negation(False)).
    - .count(): the parser reports how many times the flag was set (negations are
      ignored); the map function then receives the count.
    """
    __typename__ = "flag"
    is_flag = True

    def __init__(self, default=False, /):
        super().__init__(default)
        self._allow_negation = True
        self._count = False

    def allow_negation(self, flag=True, /):
        if not isinstance(flag, bool):
            raise TypeError("allow_negation() argument must be a boolean")
        self._allow_negation = flag
        return self

    def count(self):
        self._count = True
        return self

    @property
    def allows_negation(self):
        return self._allow_negation

    @property
    def counts(self):
        return self._count

    def tally(self, values, name, /):
        """
        reduce the collected occurrences of a counting flag to its final value.

        errors raised by the map function become InvalidOptionValueError, as in validate().
        """
        total = sum(1 for value in values if value is True)
        if self._mapper is Unset:
            return total
        try:
            return self._mapper(total)
        except Exception as exception:
            raise InvalidOptionValueError(self._diagnostic(name, str(total), Unset, exception)) from exception

    def get_value_text(self):
        return ""

    def describe_usage(self, name, allow_many=False, aliases=()):
        item = super().describe_usage(name, allow_many, aliases)
        item["allow_negation"] = self._allow_negation
        return item

    def _accepts(self, value):
        return isinstance(value, bool)

    def _stringify(self, value):
        return "true" if value else "false"

    def _parse(self, text):
        if text == "true":
            return True
        if text == "false":
            return False
        raise ValueError("it should be true or false")

    def _finish(self, value):
        if self._count:
            return value
        return super()._finish(value)

    def _summary(self, max_length):
        summary = f"({MESSAGE_SET_BY_DEFAULT})" if self._default else Unset
        if self._description is Unset:
            return summary
        description = "\n".join(split_paragraph(self._description, max_length))
        return description if summary is Unset else f"{description} {summary}"


def string(default=Unset, /, *, registry=Unset):
    """build a StringValidator (formats resolve against *registry*, default: formats)."""
    return StringValidator(default, registry=coalesce(registry, formats))


def number(default=Unset, /):
    return NumberValidator(default)


def path(default=Unset, /):
    return PathValidator(default)


def flag(default=False, /):
    return FlagValidator(default)


__all__ = (
    "ConstraintType",
    "Constraint",
    "StopType",
    "STOP",
    "Validator",
    "ValueValidator",
    "StringValidator",
    "NumberValidator",
    "PathValidator",
    "FlagValidator",
    "string",
    "number",
    "path",
    "flag",
)
