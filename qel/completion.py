"""
qel shell completion (bash and zsh).

Protocol
- The shell wrapper function (see script()) runs the command with COMP_LINE (command line
  up to the cursor) and COMP_POINT (cursor position) set; the Parser notices them before
  parsing, calls complete() and writes one candidate per line on stdout.
- Two sentinels ask the wrapper to fall back on native completion:
  • @@QEL_PATH@@: files and directories.
  • @QEL_DIR@: directories only.
- zsh candidates may carry a description ("name:description"); bash candidates are
  padded as "name -- description" when there are at least two of them.

Debug trace
- complete(..., debug=path) appends a trace of the run to path through a logging
  FileHandler attached to this module's logger; abort() ends it with a "======" line.
"""
import inspect
import logging
import os
import re
import time

from .faults import ParserExit
from .arguments import find, resolve
from .tokens import split_assignments, tokenize
from .utils import Unset
from .validators import PathValidator, StringValidator

logger = logging.getLogger(__name__)

PATH_SENTINEL = "@@QEL_PATH@@"
DIR_SENTINEL = "@QEL_DIR@"
BASH_MIN_WIDTH = 25
DEFAULT_FUNCTION_NAME = "_qel_completion"

_VARIABLE = re.compile(r"^\$([a-zA-Z_][a-zA-Z0-9_]*)?$")
_trace = Unset


def _open_trace(path):
    global _trace
    _close_trace()
    handler = logging.FileHandler(path, mode="a")
    handler.setFormatter(logging.Formatter("%(message)s"))
    _trace = handler, logger.level, logger.propagate
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    # trace records never reach the host handlers
    logger.propagate = False


def _close_trace():
    global _trace
    if _trace is Unset:
        return
    handler, level, propagate = _trace
    _trace = Unset
    logger.removeHandler(handler)
    logger.setLevel(level)
    logger.propagate = propagate
    handler.close()


def abort(code=0, /):
    """
    end a completion run: close the debug trace and return the ParserExit to raise.
    """
    logger.debug("======")
    _close_trace()
    return ParserExit(code)


def _maybe_option(token):
    return token is not None and token.content.startswith("-")


def _matching(words, content):
    """return (words starting with content, exact match or None)."""
    matches = [word for word in words if not content or word.startswith(content)]
    return matches, content if content in matches else None


def _negation(name):
    return "--no-" + name[2:]


def _used_names(tokens, handlers, aliases):
    used = []
    for token in tokens:
        if not _maybe_option(token):
            continue
        if (found := find(token.content, handlers, aliases)) is not None:
            handler, _ = found
            if handler.name not in used:
                used.append(handler.name)
    return used


def _unused_names(handlers, used):
    return [name for name, handler in handlers.items() if name not in used or handler.allow_many]


def _aliases_map(handlers, aliases):
    result = {}
    for alias, target in aliases.items():
        if (name := resolve(target, aliases)) in handlers:
            result.setdefault(name, [])
            if alias not in result[name]:
                result[name].append(alias)
    return result


def _expand_names(names, handlers, aliases, include_aliases):
    """names plus their --no- variants and (optionally) their aliases."""
    aliases_map = _aliases_map(handlers, aliases)
    result = list(names)
    for name in names:
        validator = handlers[name].validator
        negatable = validator.is_flag and validator.allows_negation
        if negatable and name.startswith("--") and (negation := _negation(name)) not in result:
            result.append(negation)
        if not include_aliases:
            continue
        for alias in aliases_map.get(name, []):
            result.append(alias)
            if negatable and alias.startswith("--") and (negation := _negation(alias)) not in result:
                result.append(negation)
    return result


def _describe(name, handlers, aliases):
    found = find(name, handlers, aliases)
    if found is None:
        return ""
    validator = found[0].validator
    parts = []
    if description := validator.get_description().replace("\n", " "):
        parts.append(description)
    if validator.default_value:
        parts.append(f"(default: {validator.default_value})")
    return " ".join(parts)


def _annotate(candidates, descriptions, shell):
    """attach descriptions to candidates ({candidate: description})."""
    if shell == "zsh":
        return [
            f"{candidate}:{descriptions[candidate]}" if descriptions.get(candidate) else candidate
            for candidate in candidates
        ]
    if shell == "bash" and len(candidates) >= 2:
        width = max(BASH_MIN_WIDTH, *map(len, candidates))
        return [
            f"{candidate.ljust(width)} -- {descriptions[candidate]}" if descriptions.get(candidate) else candidate
            for candidate in candidates
        ]
    return candidates


def _escape(candidates):
    return [candidate.replace(":", "\\:") for candidate in candidates]


def _quote(candidates, token):
    quote = (token.quote if token is not None else None) or '"'
    return [
        f"{quote}{candidate}{quote}" if " " in candidate and " -- " not in candidate else candidate
        for candidate in candidates
    ]


def _complete_variable(content):
    if not content or (match := _VARIABLE.match(content)) is None:
        return None
    logger.debug("Argument value completion (variable) from '%s'", content)
    prefix = match.group(1) or ""
    return [
        f"${name}" for name in os.environ
        if name != "_" and not name.startswith(" ") and name.startswith(prefix)
    ]


async def _run(function, *arguments):
    result = function(*arguments)
    if inspect.isawaitable(result):
        result = await result
    return list(result)


async def _complete_values(validator, content, shell):
    """candidate values of one validator, given the partial value typed so far."""
    custom = validator.completer
    try:
        if isinstance(validator, StringValidator):
            choices = validator.choices
            words = [value for value, _ in choices]

            def default():
                return _matching(words, content)[0]

            if custom is not None:
                logger.debug("Argument value completion (custom) from '%s'", content)
                return _escape(await _run(custom, content, default))
            if not words:
                return []
            logger.debug("Argument value completion (enum) from '%s'", content)
            candidates = default()
            if len(candidates) > 1:
                descriptions = {value: description.replace("\n", " ") for value, description in choices if description}
                escaped = _escape(candidates)
                return _annotate(escaped, dict(zip(escaped, map(descriptions.get, candidates))), shell)
            return _escape(candidates)

        if isinstance(validator, PathValidator):
            def default():
                return [DIR_SENTINEL if validator.is_directory else PATH_SENTINEL]

            if custom is not None:
                logger.debug("Argument value completion (custom) from '%s'", content)
                return _escape(await _run(custom, content, default))
            logger.debug("Argument value completion (path) from '%s'", content)
            return default()

        value = validator.default_value

        def default():
            return [] if value is None else [str(value)]

        if custom is not None:
            logger.debug("Argument value completion (custom) from '%s'", content)
            return _escape(await _run(custom, content, default))
        logger.debug("Argument value completion (default) from '%s'", content)
        return _escape(default())
    except Exception:
        logger.debug("Argument value completion error", exc_info=True)
        return []


async def complete(cmdline, cursor, handlers, aliases, *, shell="bash", include_aliases=True, debug=Unset):
    """
    return the completion candidates for a command line.

    parameters
    - cmdline: the command line (up to the cursor), program name included.
    - cursor: cursor position in cmdline.
    - handlers: canonical name -> Handler (see qel.arguments).
    - aliases: alias -> target name.
    - shell: "bash" or "zsh".
    - include_aliases: offer aliases when completing argument names.
    - debug: path of a file to append a trace to.

    completion never mutates handlers nor aliases and never writes to stdout.
    """
    if debug:
        _open_trace(debug)
    started = time.monotonic()

    cmdline = re.sub(r" +$", " ", cmdline)
    cursor = min(cursor, len(cmdline))
    tokens = split_assignments(tokenize(cmdline))

    current, position = None, None
    for index, token in enumerate(tokens):
        if token.index >= cursor:
            break
        current, position = token, index
    previous = tokens[position - 1] if position else None

    if current is None:
        logger.debug("Cannot find current token")
        return []
    logger.debug("current=%r previous=%r", current, previous)

    content = current.content
    if content.startswith("$(") and (not content.endswith(")") or content.count("(") != content.count(")")):
        logger.debug("Inside a subshell (completion aborted)")
        return []

    ends_with_space = cmdline[cursor - 1:cursor] == " " and not content.endswith(" ")
    candidates = None
    offer_names = False

    if ends_with_space and not _maybe_option(current):
        offer_names = True
    elif ends_with_space or (not _maybe_option(current) and _maybe_option(previous)):
        option, partial = (current, "") if ends_with_space else (previous, content)
        if (found := find(option.content, handlers, aliases)) is None:
            logger.debug("No handler found for %s", option.content)
            return []
        handler, _ = found
        logger.debug("Found handler %s (%s)", handler.name, type(handler.validator).__name__)
        if handler.is_flag:
            offer_names = True
        elif (candidates := _complete_variable(partial)) is None:
            candidates = await _complete_values(handler.validator, partial, shell)
    elif _maybe_option(current):
        used = _used_names(tokens[:position] + tokens[position + 1:], handlers, aliases)
        names = _expand_names(_unused_names(handlers, used), handlers, aliases, include_aliases)
        matches, _ = _matching(names, content)
        if not matches:
            matches, _ = _matching(_expand_names(used, handlers, aliases, include_aliases), content)
            if len(matches) != 1:
                matches = []
        candidates = _annotate(matches, {name: _describe(name, handlers, aliases) for name in matches}, shell)

    if offer_names:
        used = _used_names(tokens, handlers, aliases)
        names = _expand_names(_unused_names(handlers, used), handlers, aliases, include_aliases)
        candidates = _annotate(names, {name: _describe(name, handlers, aliases) for name in names}, shell)

    candidates = candidates or []
    logger.debug("Completions (%.3fs): %s", time.monotonic() - started, candidates[:15])
    if shell == "bash":
        candidates = _quote(candidates, current)
    return candidates


_BASH_FUNCTION = """\
{name}() {{
  local IFS=$'\\n'

  local cur prev words cword
  _get_comp_words_by_ref -n : cur prev words cword

  # command which triggered the completion
  local cmd=${{words[0]}}

  local output
  output=$(COMP_LINE="${{COMP_LINE}}" COMP_POINT="${{COMP_POINT}}" ${{cmd}})

  if [[ -n "${{output}}" ]]; then
    case "$output" in
    "{directory}")
      _filedir -d
      ;;
    "{path}")
      _filedir
      ;;
    *)
      COMPREPLY=($output)
      ;;
    esac
  fi
}}"""

_ZSH_FUNCTION = """\
{name}() {{
  # full command line up to cursor position
  local cmd_line="${{BUFFER[1, $CURSOR]}}"

  # command which triggered the completion
  local cmd="${{words[1]}}"

  local output
  output=$({prefix}_COMPLETION_SHELL=zsh COMP_LINE="${{cmd_line}}" COMP_POINT="${{CURSOR}}" ${{cmd}})

  if [[ -n "${{output}}" ]]; then
    case "$output" in
    "{directory}")
      _files -/
      ;;
    "{path}")
      _files
      ;;
    *)
      local completions=("${{(f)output}}")
      _describe 'completions' completions
      ;;
    esac
  fi
}}"""


def script(shell, commands, /, function_name=DEFAULT_FUNCTION_NAME, *, prefix="QEL", function=True, setup=True):
    """
    render the shell code enabling completion for commands.

    - function: include the wrapper function.
    - setup: include the registration lines (complete -F / compdef), preceded for zsh by
      a "#compdef" header line.
    """
    if shell not in ("bash", "zsh"):
        raise ValueError(f"unsupported shell: {shell}")
    if not function_name.startswith("_"):
        raise ValueError('function name should start with "_"')
    commands = list(commands)
    parts = []
    if setup and shell == "zsh":
        parts.append(f"#compdef {' '.join(commands)}")
    if function:
        template = _ZSH_FUNCTION if shell == "zsh" else _BASH_FUNCTION
        parts.append(template.format(name=function_name, prefix=prefix, path=PATH_SENTINEL, directory=DIR_SENTINEL))
    if setup:
        register = "compdef {name} {command}" if shell == "zsh" else "complete -F {name} {command}"
        parts.append("\n".join(register.format(name=function_name, command=command) for command in commands))
    return "\n\n".join(part for part in parts if part) + "\n"


__all__ = (
    "PATH_SENTINEL",
    "DIR_SENTINEL",
    "complete",
    "abort",
    "script",
)
