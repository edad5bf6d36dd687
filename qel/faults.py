"""
qel faults (argument errors, parser exits and process errors) and rendering.

Scope
- FaultCode: canonical, stable string tags for every user-facing argument fault. The
  tags are what scripts match on; the messages are for humans.
- ArgumentException: base type carrying message + options; knows how to render itself
  through rich and how to surface itself (raise, or print + usage + exit code 2).
- One subclass per code, so callers can catch precisely (e.g., UnknownOptionError).
- ParserExit: the "operation complete, do not continue" marker. It is a SystemExit, so
  an uncaught one terminates the script with the carried code; library code never calls
  sys.exit itself.
- ProcessError: raised by qel.process.exec on a failed command, with the final state.
- trigger(): central entry point to surface a fault with runtime options.

Taxonomy
- configuration (raised while compiling an argument mapping, never recovered)
  • CONFIG_EMPTY_KEY, CONFIG_NO_NAME, CONFIG_NON_OPTION_KEY, CONFIG_INVALID_TYPE,
    CONFIG_SHORT_OPTION_TOO_LONG, CONFIG_INVALID_ALIAS
- parsing (raised while walking an argument vector)
  • UNKNOWN_OPTION, MISSING_REQUIRED_VALUE, MISSING_VALUE_FOR_LONG_OPTION
- validation (raised by validators)
  • INVALID_OPTION_VALUE, MISSING_REQUIRED_OPTION

Integration
- Parser code builds a fault and calls trigger(fault, shell=..., parser=...).
- With shell=False the fault is raised; with shell=True it is rendered on stderr
  followed by the usage block, then ParserExit(2) is raised.
- Hosts may relabel codes with a __codes__ mapping and restyle output with a
  __styles__ mapping, both looked up in __main__.
"""
import os
import sys
from collections import defaultdict
from enum import StrEnum
from types import MappingProxyType

from rich.console import Console, Group
from rich.text import Text

from .utils import Unset, coalesce

console = Console(stderr=True)


class FaultCode(StrEnum):
    """
    canonical fault codes used across qel (stable string tags).

    grouping
    - configuration: spec compilation problems, raised synchronously.
    - parsing: problems with the shape of the argument vector.
    - validation: problems with the value of one argument.

    normalize() allows a host remapping to custom labels while keeping the tags stable.
    """
    # --- configuration ---
    CONFIG_EMPTY_KEY              = "ConfigEmptyKey"
    CONFIG_NO_NAME                = "ConfigNoName"
    CONFIG_NON_OPTION_KEY         = "ConfigNonOptionKey"
    CONFIG_INVALID_TYPE           = "ConfigInvalidType"
    CONFIG_SHORT_OPTION_TOO_LONG  = "ConfigShortOptionTooLong"
    CONFIG_INVALID_ALIAS          = "ConfigInvalidAlias"

    # --- parsing ---
    UNKNOWN_OPTION                = "UnknownOption"
    MISSING_REQUIRED_VALUE        = "MissingRequiredValue"
    MISSING_VALUE_FOR_LONG_OPTION = "MissingValueForLongOption"

    # --- validation ---
    INVALID_OPTION_VALUE          = "InvalidOptionValue"
    MISSING_REQUIRED_OPTION       = "MissingRequiredOption"

    def normalize(self):
        """
        return a host-normalized label for this code.

        the host application can provide a __codes__ mapping in __main__ to override
        the tags with friendlier labels. without a mapping the tag itself is returned.
        """
        return str(getattr(__import__("__main__"), "__codes__", {}).get(self, self.value))


class ArgumentException(Exception):
    """
    base type for every argument fault.

    attributes
    - message: the one-line diagnostic (also what str() returns).
    - options: read-only mapping of runtime context (shell, parser, colorful, prog...).
    - code: the FaultCode of the concrete subclass.
    """
    code = Unset

    def __init__(self, message=Unset, /, **options):
        assert isinstance(message, str | Unset)
        super().__init__(coalesce(message, ""))
        self.message = message
        self.options = MappingProxyType(options)

    def __str__(self):
        return coalesce(self.message, "")

    def __rich__(self):
        main = __import__("__main__")
        colorful = self.options.get("colorful", True)

        styles = defaultdict(str, {
            "prog-name": "bold #E6E6F0",  # near-white program name
            "code": "bold #00E5FF",  # neon cyan fault code
            "error-message": "#FF4DA6",  # friendly pinky message
        } | getattr(main, "__styles__", {}))

        def text(fragment, style):
            return Text(str(fragment), styles[style] if colorful else "")

        prog = getattr(main, "__prog__", self.options.get("prog", os.path.basename(sys.argv[0])))

        header = Text.assemble(
            "[ ",
            text(prog, "prog-name"),
            " — ",
            text(self.code.normalize() if self.code is not Unset else "?", "code"),
            " ]",
        )
        return Group(Text.assemble(header, " ", text(self, "error-message")))

    def __trigger__(self) -> None:
        if not self.options.get("shell", False):
            raise self from None
        if (parser := self.options.get("parser")) is not None:
            parser.usage(self)
        else:
            console.print(self)
        raise ParserExit(2) from None

    def __replace__(self, *unused, **overrides):
        assert not unused, "positional arguments are not allowed"
        return type(self)(self.message, **{**self.options, **overrides})


class ConfigEmptyKeyError(ArgumentException):
    code = FaultCode.CONFIG_EMPTY_KEY


class ConfigNoNameError(ArgumentException):
    code = FaultCode.CONFIG_NO_NAME


class ConfigNonOptionKeyError(ArgumentException):
    code = FaultCode.CONFIG_NON_OPTION_KEY


class ConfigInvalidTypeError(ArgumentException):
    code = FaultCode.CONFIG_INVALID_TYPE


class ConfigShortOptionTooLongError(ArgumentException):
    code = FaultCode.CONFIG_SHORT_OPTION_TOO_LONG


class ConfigInvalidAliasError(ArgumentException):
    code = FaultCode.CONFIG_INVALID_ALIAS


class UnknownOptionError(ArgumentException):
    code = FaultCode.UNKNOWN_OPTION


class MissingRequiredValueError(ArgumentException):
    code = FaultCode.MISSING_REQUIRED_VALUE


class MissingValueForLongOptionError(ArgumentException):
    code = FaultCode.MISSING_VALUE_FOR_LONG_OPTION


class InvalidOptionValueError(ArgumentException):
    code = FaultCode.INVALID_OPTION_VALUE


class MissingRequiredOptionError(ArgumentException):
    code = FaultCode.MISSING_REQUIRED_OPTION


class ParserExit(SystemExit):
    """
    raised when the parser has fully handled the invocation (help, version, completion,
    describe-usage, or a rendered usage error). the caller decides whether to exit;
    left uncaught, the interpreter exits with .code.
    """
    def __init__(self, code=0, /):
        super().__init__(code)


class ProcessError(Exception):
    """
    a command run through qel.process.exec exited with a non-zero code.

    - message: the command's stderr, or "Command not found" for exit code 127.
    - state: the final qel.process.State.
    """
    def __init__(self, message, /, state):
        super().__init__(message)
        self.message = message
        self.state = state


def trigger(fault, /, **options):
    """
    surface a fault with the given runtime options.

    contract
    - fault must provide __trigger__ and __replace__ methods (see ArgumentException).
    - options are merged into the fault via __replace__(**options) before triggering.
    - with shell=True the fault is rendered with usage and ParserExit(2) is raised;
      otherwise the fault itself is raised.
    """
    if (
        not hasattr(fault, "__trigger__") or
        not callable(fault.__trigger__) or
        not hasattr(fault, "__replace__") or
        not callable(fault.__replace__)
    ):
        raise TypeError("trigger() argument must have a __trigger__ and __replace__ methods")
    fault.__replace__(**options).__trigger__()


__all__ = (
    "FaultCode",
    "ArgumentException",
    "ConfigEmptyKeyError",
    "ConfigNoNameError",
    "ConfigNonOptionKeyError",
    "ConfigInvalidTypeError",
    "ConfigShortOptionTooLongError",
    "ConfigInvalidAliasError",
    "UnknownOptionError",
    "MissingRequiredValueError",
    "MissingValueForLongOptionError",
    "InvalidOptionValueError",
    "MissingRequiredOptionError",
    "ParserExit",
    "ProcessError",
    "trigger",
)
