"""
qel argument parser (Parser, Namespace, Handler).

Overview
- Parser: compiles an argument mapping once, then parses argument vectors into Namespaces.
- Namespace: dict of argument name -> value with the residual positionals under "_";
  has()/get()/[] resolve aliases.
- Handler: compiled entry of one argument (validator, flag-ness, multi-valued).
- parser(spec, **options) / parse(spec, **options): module-level shortcuts.

Argument mapping
    {
        "--email": string().format("email").required(),   # single value
        "--tag": [string()],                               # multi-valued (append)
        "--verbose": flag().count(),                       # counting flag
        "-e": "--email",                                   # alias (chains allowed)
    }

Compilation errors (raised at construction, never recovered)
- ConfigEmptyKeyError, ConfigNonOptionKeyError, ConfigNoNameError,
  ConfigInvalidTypeError, ConfigShortOptionTooLongError, ConfigInvalidAliasError (alias
  cycle, or alias not resolving to an argument).

Parsing
- "--" ends option processing; "-xyz" is "-x -y -z" (only the last one may take a value);
  "--name=value" carries its value inline; "--no-<flag>" negates a negatable flag.
- A value-taking option consumes the next token unless it looks like an option; numeric
  options accept negative numbers ("--delta -5").
- Absent arguments are resolved from their environment variable or default once the
  vector is walked; unresolved optional arguments are left out of the Namespace.
- Counting flags report the number of affirmative occurrences; "--no-<flag>" occurrences
  are ignored.

Short-circuits (checked in this order, each ends with ParserExit(0))
1. completion: COMP_LINE and COMP_POINT are set; candidates are written to stdout.
2. describe usage: <PREFIX>_DESCRIBE_USAGE or DESCRIBE_USAGE is set; the usage
   descriptors are written to stdout as JSON.
3. help: a help flag (default --help, -h) appears before "--"; help goes to stderr.
4. version: a version flag appears and a version is configured; printed on stdout.

Faults
- With usage=True (default) a parse fault is printed on stderr through rich, followed by
  the usage block, and ParserExit(2) is raised. With usage=False the fault is raised.
"""
import asyncio
import inspect
import json
import logging
import os
import re
import sys
from concurrent.futures import ThreadPoolExecutor
from types import MappingProxyType
from typing import NamedTuple

from .faults import (
    ArgumentException,
    ConfigEmptyKeyError,
    ConfigInvalidAliasError,
    ConfigInvalidTypeError,
    ConfigNoNameError,
    ConfigNonOptionKeyError,
    ConfigShortOptionTooLongError,
    MissingRequiredValueError,
    MissingValueForLongOptionError,
    ParserExit,
    UnknownOptionError,
    trigger,
)
from .usage import UsageRenderer
from .utils import Unset, coalesce, mirror
from .validators import NumberValidator, Validator

logger = logging.getLogger(__name__)

NUMERIC = re.compile(r"-?\d*(?:\.(?=\d))?\d*")


def resolve(name, aliases, /):
    """follow alias chains (assumed acyclic) down to a canonical name."""
    while name in aliases:
        name = aliases[name]
    return name


def find(name, handlers, aliases, /):
    """
    return (handler, negated) for an argument name as typed, or None when unknown.

    "--no-<name>" resolves to the flag "--<name>" (through aliases) when it allows
    negation and no argument is declared under the "--no-" name itself.
    """
    if (handler := handlers.get(resolve(name, aliases))) is not None:
        return handler, False
    if name.startswith("--no-"):
        handler = handlers.get(resolve("--" + name[5:], aliases))
        if handler is not None and handler.is_flag and handler.validator.allows_negation:
            return handler, True
    return None


class Handler(NamedTuple):
    """
    compiled argument entry.

    calling a handler validates one raw value and returns the new accumulated value:
    a list for multi-valued arguments and counting flags, the validated value otherwise.
    """
    name: str
    validator: Validator
    is_flag: bool
    allow_many: bool

    @property
    def accumulates(self):
        return self.allow_many or (self.is_flag and self.validator.counts)

    def __call__(self, raw, previous=Unset, /):
        if self.accumulates:
            items = coalesce(previous, [])
            return [*items, self.validator.validate(raw, self.name, items[-1] if items else Unset)]
        return self.validator.validate(raw, self.name, previous)


class Namespace(dict):
    """
    parse result: argument name -> value, plus the residual list under "_".

    lookups through has(), get(), [] and "in" accept aliases.
    """

    def __init__(self, values=(), /, *, aliases=()):
        super().__init__(values)
        self.setdefault("_", [])
        self._aliases = dict(aliases)

    def resolve(self, name, /):
        return resolve(name, self._aliases)

    def has(self, name, /):
        return super().__contains__(self.resolve(name))

    def get(self, name, default=None, /):
        return super().get(self.resolve(name), default)

    def __getitem__(self, name):
        return super().__getitem__(self.resolve(name))

    def __contains__(self, name):
        return self.has(name)


class Parser:
    """
    declarative command-line parser.

    parameters
    - spec: mapping of argument name -> validator, [validator] or alias name.
    - argv: argument vector to parse (default: sys.argv[1:]).
    - permissive: keep unknown options in "_" instead of failing.
    - stop_at_positional: everything after the first positional is positional.
    - parse: parse right away (the result is then available through has/get/result).
    - script_name: name shown in usage (default: <PREFIX>_SCRIPT_NAME, else the basename
      of sys.argv[0]).
    - prefix: prefix of the environment variables read by the parser (default: QEL).
    - description, examples: help header and EXAMPLES section.
    - version: version string printed by the version flags.
    - help_flags, version_flags: short-circuit flags (ignored when declared in spec).
    - usage: print usage and raise ParserExit(2) on faults instead of raising them.
    - max_length: maximum line length of usage and help.
    - after: callable (or coroutine function) receiving the Namespace after parsing;
      scheduled on the running event loop when there is one.
    """

    def __init__(
        self,
        spec,
        /,
        *,
        argv=Unset,
        permissive=False,
        stop_at_positional=False,
        parse=True,
        script_name=Unset,
        prefix="QEL",
        description=Unset,
        examples=(),
        version=Unset,
        help_flags=("--help", "-h"),
        version_flags=("--version",),
        usage=True,
        max_length=90,
        after=Unset,
    ):
        if not hasattr(spec, "items"):
            raise TypeError("Parser() spec must be a mapping")
        if not isinstance(prefix, str) or not prefix:
            raise TypeError("Parser() prefix must be a non-empty string")
        if not isinstance(max_length, int) or max_length <= 0:
            raise TypeError("Parser() max_length must be a positive integer")
        if after is not Unset and not callable(after):
            raise TypeError("Parser() after must be callable")

        self._spec = dict(spec)
        self._handlers, self._aliases = self._compile(self._spec)
        self._argv = list(sys.argv[1:] if argv is Unset else argv)
        self._permissive = bool(permissive)
        self._stop_at_positional = bool(stop_at_positional)
        self._prefix = prefix
        self._script_name = coalesce(
            script_name,
            os.environ.get(f"{prefix}_SCRIPT_NAME") or os.path.basename(sys.argv[0]),
        )
        self._description = coalesce(description, "")
        self._examples = tuple(examples)
        self._version = version
        self._help_flags = tuple(help_flags)
        self._version_flags = tuple(version_flags)
        self._usage_enabled = bool(usage)
        self._max_length = max_length
        self._after = after
        self._renderer = UsageRenderer(self)
        self._result = Unset
        self._task = Unset

        if parse:
            self.parse()

    spec = mirror("spec")
    aliases = mirror("aliases")
    examples = mirror("examples")
    help_flags = mirror("help_flags")
    version_flags = mirror("version_flags")

    @property
    def handlers(self):
        return MappingProxyType(self._handlers)

    @property
    def script_name(self):
        return self._script_name

    @property
    def description(self):
        return self._description

    @property
    def version(self):
        return self._version

    @property
    def max_length(self):
        return self._max_length

    @property
    def result(self):
        """the Namespace of the last parse (RuntimeError before the first one)."""
        if self._result is Unset:
            raise RuntimeError("arguments have not been parsed yet")
        return self._result

    # --- compilation ----------------------------------------------------------------

    @staticmethod
    def _compile(spec):
        handlers, aliases = {}, {}
        for key, entry in spec.items():
            if not isinstance(key, str) or not key:
                raise ConfigEmptyKeyError("argument key cannot be an empty string")
            if key[0] != "-":
                raise ConfigNonOptionKeyError(f"argument key must start with '-' but found: '{key}'")
            if len(key) == 1:
                raise ConfigNoNameError(f"argument key must have a name; singular '-' keys are not allowed: {key}")
            if key[1] != "-" and len(key) > 2:
                raise ConfigShortOptionTooLongError(
                    f"short argument keys (with a single hyphen) must have only one character: {key}"
                )
            if isinstance(entry, str):
                aliases[key] = entry
                continue
            allow_many = False
            if isinstance(entry, list | tuple) and len(entry) == 1 and isinstance(entry[0], Validator):
                entry, allow_many = entry[0], True
            elif not isinstance(entry, Validator):
                raise ConfigInvalidTypeError(
                    f"argument type must be a validator, a one-element list of a validator or an alias: {key}"
                )
            handlers[key] = Handler(key, entry, entry.is_flag, allow_many)

        for key in aliases:
            chain, name = [key], aliases[key]
            while name in aliases:
                if name in chain:
                    raise ConfigInvalidAliasError(f"alias cycle detected: {' -> '.join([*chain, name])}")
                chain.append(name)
                name = aliases[name]
            if name not in handlers:
                raise ConfigInvalidAliasError(f"alias {key} does not resolve to an argument: {name}")
        return handlers, aliases

    def resolve(self, name, /):
        """return the canonical name of an argument name or alias."""
        return resolve(name, self._aliases)

    def aliases_map(self):
        """return canonical name -> list of aliases (declaration order)."""
        result = {}
        for alias in self._aliases:
            result.setdefault(self.resolve(alias), []).append(alias)
        return result

    def find(self, name, /):
        """return (handler, negated) for an argument name as typed, or None."""
        return find(name, self._handlers, self._aliases)

    # --- parsing --------------------------------------------------------------------

    def parse(self, argv=Unset, /):
        """
        parse an argument vector (default: the one given at construction).

        runs the short-circuits first, then walks the vector; returns the Namespace and
        schedules the after hook.
        """
        argv = self._argv if argv is Unset else list(argv)
        self._short_circuit(argv)
        try:
            result = self._walk(argv)
        except ArgumentException as fault:
            logger.debug("parse fault: %s", fault)
            trigger(fault, shell=self._usage_enabled, parser=self, prog=self._script_name)
            raise
        self._result = result
        if self._after is not Unset:
            self._schedule(result)
        return result

    def _walk(self, argv):
        values, rest = {}, []
        index = 0
        while index < len(argv):
            token = argv[index]
            if self._stop_at_positional and rest:
                rest.extend(argv[index:])
                break
            if token == "--":
                rest.extend(argv[index + 1:])
                break
            if len(token) < 2 or token[0] != "-":
                rest.append(token)
                index += 1
                continue

            parts = [token] if token[1] == "-" or len(token) == 2 else [f"-{char}" for char in token[1:]]
            for position, part in enumerate(parts):
                name, inline = part, None
                if part.startswith("--"):
                    name, separator, inline = part.partition("=")
                    inline = inline if separator else None

                if (found := self.find(name)) is None:
                    if self._permissive:
                        rest.append(part)
                        continue
                    raise UnknownOptionError(f"unknown or unexpected option: {name}")
                handler, negated = found

                if not handler.is_flag and position + 1 < len(parts):
                    raise MissingRequiredValueError(
                        f"option requires argument (but was followed by another short argument): {name}"
                    )

                if handler.is_flag:
                    raw = "true" if inline is None else inline
                    if negated:
                        raw = {"true": "false", "false": "true"}.get(raw, raw)
                elif inline is not None:
                    raw = inline
                else:
                    following = argv[index + 1] if index + 1 < len(argv) else None
                    if following is None or (
                        len(following) > 1 and following[0] == "-" and not (
                            isinstance(handler.validator, NumberValidator) and NUMERIC.fullmatch(following)
                        )
                    ):
                        extended = "" if name == handler.name else f" (alias for {handler.name})"
                        raise MissingValueForLongOptionError(f"option requires argument: {name}{extended}")
                    raw = following
                    index += 1

                values[handler.name] = handler(raw, values.get(handler.name, Unset))
            index += 1

        result = Namespace(aliases=self._aliases)
        result["_"] = rest
        for name, handler in self._handlers.items():
            if name in values:
                value = values[name]
            else:
                value = handler.validator.validate(None, name)
                if value is not None and handler.accumulates:
                    value = [value]
            if handler.is_flag and handler.validator.counts:
                value = handler.validator.tally(coalesce(value, []), name)
            if value is None or (isinstance(value, list) and not value):
                continue
            result[name] = value
        return result

    def _short_circuit(self, argv):
        environ = os.environ
        if "COMP_LINE" in environ and "COMP_POINT" in environ:
            self._complete(environ)
        if f"{self._prefix}_DESCRIBE_USAGE" in environ or "DESCRIBE_USAGE" in environ:
            logger.debug("describe usage requested")
            sys.stdout.write(json.dumps(self.describe_usage(), default=str) + "\n")
            sys.stdout.flush()
            raise ParserExit(0)

        options = argv[:argv.index("--")] if "--" in argv else argv
        if any(name in options for name in self._help_flags if name not in self._spec):
            logger.debug("help requested")
            self.help()
            raise ParserExit(0)
        if self._version is not Unset:
            if any(name in options for name in self._version_flags if name not in self._spec):
                logger.debug("version requested")
                sys.stdout.write(f"{self._version}\n")
                sys.stdout.flush()
                raise ParserExit(0)

    def _complete(self, environ):
        from .completion import abort, complete

        prefix = self._prefix
        cmdline = environ["COMP_LINE"]
        try:
            cursor = int(environ["COMP_POINT"])
        except ValueError:
            cursor = len(cmdline)
        options = {
            "shell": environ.get(f"{prefix}_COMPLETION_SHELL") or "bash",
            "include_aliases": environ.get(f"{prefix}_COMPLETION_INCLUDE_ARG_ALIASES", "").lower() not in ("false", "0"),
            "debug": environ.get(f"{prefix}_COMPLETION_DEBUG") or Unset,
        }
        logger.debug("completion requested (cursor=%d, shell=%s)", cursor, options["shell"])
        coroutine = complete(cmdline, cursor, self._handlers, self._aliases, **options)
        try:
            try:
                asyncio.get_running_loop()
            except RuntimeError:
                candidates = asyncio.run(coroutine)
            else:
                with ThreadPoolExecutor(max_workers=1) as pool:
                    candidates = pool.submit(asyncio.run, coroutine).result()
        except Exception:
            logger.debug("completion failed", exc_info=True)
            raise abort(1) from None
        for candidate in candidates:
            sys.stdout.write(f"{candidate}\n")
        sys.stdout.flush()
        raise abort(0)

    def _schedule(self, result):
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        if inspect.iscoroutinefunction(self._after):
            if loop is None:
                asyncio.run(self._after(result))
            else:
                self._task = loop.create_task(self._after(result))
        elif loop is None:
            self._after(result)
        else:
            loop.call_soon(self._after, result)

    # --- result access --------------------------------------------------------------

    def has(self, name, /):
        return self.result.has(name)

    def get(self, name, default=None, /):
        return self.result.get(name, default)

    def __getitem__(self, name):
        return self.result[name]

    def __contains__(self, name):
        return self.result.has(name)

    # --- usage ----------------------------------------------------------------------

    def help(self):
        """print the help block on stderr."""
        self._renderer.print_help()

    def usage(self, error=Unset, /):
        """print the fault (when given) and the usage block on stderr."""
        self._renderer.print_usage(error)

    def get_help(self):
        return self._renderer.render_help()

    def get_usage(self):
        return self._renderer.render_usage()

    def describe_usage(self):
        """return one usage descriptor per argument, in declaration order."""
        aliases = self.aliases_map()
        return [
            handler.validator.describe_usage(name, handler.allow_many, aliases.get(name, []))
            for name, handler in self._handlers.items()
        ]

    def __repr__(self):
        return f"Parser({', '.join(self._spec)})"


def parser(spec, /, **options):
    """build a Parser (parsing right away unless parse=False)."""
    return Parser(spec, **options)


def parse(spec, /, **options):
    """build a Parser and return the Namespace of its argument vector."""
    options.pop("parse", None)
    return Parser(spec, parse=False, **options).parse()


__all__ = (
    "Handler",
    "Namespace",
    "Parser",
    "parser",
    "parse",
)
