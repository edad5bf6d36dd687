"""
qel child-process supervisor.

Overview
- Process: spawns one child (directly or through a shell), streams its stdout and stderr
  to event listeners or into buffers, and resolves to a terminal State.
- exec(cmdline, **options): run a command and return its stdout, raising ProcessError on
  a non-zero exit code.
- waitpid(pid, poll): wait for an arbitrary pid to disappear.

Streams
- Without a listener, a stream is buffered; once it is closed, blank lines are removed
  (skip_blank_lines) and the content is stripped (trim).
- With a listener, every decoded chunk is delivered as an OutputEvent; with
  line_buffered=True complete lines are delivered instead, an incomplete trailing line
  keeping the timestamp of its first chunk.
- redirect_stderr merges stderr into stdout. A caller-provided stdout descriptor receives
  the output directly: it is rewound before and after the run, the stdout listener is
  ignored and stderr is never merged into it.

Exit
- The exit listener runs once both streams are closed and the child has been reaped;
  the task returned by run() resolves after it.
- A child killed by a signal gets exit_code = -signum and signal = "SIGxxx".
- Exit code 127 without any output on the channel carrying errors synthesizes
  "Command not found" on that channel. A program that cannot be spawned at all
  (FileNotFoundError) ends the same way.

Example
    >>> process = Process("ls -l /tmp", line_buffered=True)
    >>> @process.on("stdout")
    ... def show(event):
    ...     print(event.data)
    >>> state = await process.run()
"""
import asyncio
import codecs
import contextlib
import errno
import inspect
import logging
import os
import re
import shlex
import signal as signals
import tempfile
import time
from typing import NamedTuple

from .faults import ProcessError
from .utils import Unset, coalesce

logger = logging.getLogger(__name__)

COMMAND_NOT_FOUND = "Command not found"
EVENTS = ("stdout", "stderr", "exit", "pause", "resume")

_BLANK_LINES = re.compile(r"^\s*\n", re.M)


class State(NamedTuple):
    """
    terminal (or current) state of a Process.

    - pid: 0 until the child is spawned.
    - exit_code: None while running; negative when the child was killed by a signal.
    - did_timeout: the child was killed because the timeout expired.
    - signal: name of the terminating signal ("SIGTERM"), if any.
    """
    pid: int = 0
    exit_code: int | None = None
    did_timeout: bool = False
    signal: str | None = None


class OutputEvent(NamedTuple):
    pid: int
    timestamp: float
    data: str


class ProcessEvent(NamedTuple):
    pid: int
    timestamp: float


def split_lines(content, pending="", skip_blank_lines=False):
    """
    split decoded output into complete lines.

    pending is the incomplete line left over by the previous chunk; it is prepended to
    the first line. A trailing carriage return is removed from every line. Returns
    (lines, incomplete trailing line).

        >>> split_lines("b\\r\\nc\\n\\nd", "a")
        (['ab', 'c', ''], 'd')
    """
    lines = []
    *complete, rest = content.split("\n")
    for line in complete:
        line, pending = (pending + line).removesuffix("\r"), ""
        if line or not skip_blank_lines:
            lines.append(line)
    return lines, pending + rest


def _descriptor(target):
    return target if isinstance(target, int) else target.fileno()


def _rewind(descriptor):
    try:
        os.lseek(descriptor, 0, os.SEEK_SET)
    except OSError as error:
        # pipes and terminals cannot seek
        if error.errno != errno.ESPIPE:
            raise


class Process:
    """
    supervisor of one child process.

    parameters
    - cmdline: string (split with shlex) or sequence of arguments.
    - use_path: look the program up in PATH; otherwise a bare program name is relative to
      the working directory.
    - cwd, uid, gid: working directory and credentials of the child.
    - env: environment of the child; merged into os.environ unless replace_env is True.
    - use_shell, shell: run the command line through "<shell> -c".
    - new_session: start the child in a new session (setsid).
    - redirect_stderr: merge stderr into stdout.
    - line_buffered: deliver complete lines to the stdout/stderr listeners.
    - trim, skip_blank_lines: post-processing of the buffered output.
    - timeout, timeout_signal: kill the child with timeout_signal after timeout seconds.
    - stdin: descriptor (or file object) read by the child; rewound before the spawn.
    - input: str or bytes fed to the child's stdin through a temporary file.
    - stdout: descriptor (or file object) receiving the child's stdout.
    - buffer_size: maximum size of one read on the pipes.
    - props: opaque value kept for the caller.

    the same Process can be run again once it has terminated; its state is reset.
    """

    def __init__(
        self,
        cmdline,
        *,
        use_path=True,
        cwd=Unset,
        uid=Unset,
        gid=Unset,
        env=Unset,
        replace_env=True,
        use_shell=False,
        shell="/bin/sh",
        new_session=False,
        redirect_stderr=False,
        line_buffered=False,
        trim=True,
        skip_blank_lines=False,
        timeout=Unset,
        timeout_signal=signals.SIGTERM,
        stdin=Unset,
        input=Unset,
        stdout=Unset,
        buffer_size=512,
        props=Unset,
    ):
        if isinstance(cmdline, str):
            self._cmdline = cmdline.strip()
            self._args = shlex.split(self._cmdline)
        else:
            self._args = list(map(str, cmdline))
            self._cmdline = shlex.join(self._args)
        if not self._args:
            raise ValueError("command line cannot be empty")
        if stdin is not Unset and input is not Unset:
            raise ValueError("stdin and input are mutually exclusive")
        if not isinstance(buffer_size, int) or buffer_size <= 0:
            raise ValueError("buffer_size must be a positive integer")
        if timeout is not Unset and timeout <= 0:
            raise ValueError("timeout must be a positive number")

        self._use_path = use_path
        self._cwd = cwd
        self._uid = uid
        self._gid = gid
        self._env = env
        self._replace_env = replace_env
        self._use_shell = use_shell
        self._shell = shell
        self._new_session = new_session
        self._redirect_stderr = redirect_stderr and stdout is Unset
        self._line_buffered = line_buffered
        self._trim = trim
        self._skip_blank_lines = skip_blank_lines
        self._timeout = timeout
        self._timeout_signal = signals.Signals(timeout_signal)
        self._stdin = stdin
        self._input = input
        self._stdout = stdout
        self._buffer_size = buffer_size
        self._props = coalesce(props, {})

        self._listeners = {}
        self._task = None
        self._reset()

    def _reset(self):
        self._pid = 0
        self._exit_code = None
        self._did_timeout = False
        self._signal = None
        self._running = False
        self._paused = False
        self._output = {"stdout": "", "stderr": ""}
        self._received = {"stdout": False, "stderr": False}
        self._timer = None
        self._pending = set()

    @property
    def cmdline(self):
        return self._cmdline

    @property
    def pid(self):
        return self._pid

    @property
    def props(self):
        return self._props

    @property
    def state(self):
        return State(self._pid, self._exit_code, self._did_timeout, self._signal)

    @property
    def stdout(self):
        """buffered stdout (empty when a stdout listener or descriptor is used)."""
        return self._output["stdout"]

    @property
    def stderr(self):
        return self._output["stderr"]

    @property
    def running(self):
        return self._running

    @property
    def paused(self):
        return self._paused

    @property
    def success(self):
        return self._exit_code == 0

    def on(self, event, callback=Unset, /):
        """
        register the listener of an event; without a callback, return a decorator.

        events: stdout, stderr (OutputEvent), pause, resume (ProcessEvent), exit (State).
        listeners may be plain functions or coroutine functions.
        """
        if callback is Unset:
            def decorator(callback):
                self.set_event_listener(event, callback)
                return callback

            return decorator
        self.set_event_listener(event, callback)
        return self

    def set_event_listener(self, event, callback, /):
        """set (or with callback=None remove) the listener of an event."""
        if event not in EVENTS:
            raise ValueError(f"unknown event {event!r} (expected one of {', '.join(EVENTS)})")
        if callback is None:
            self._listeners.pop(event, None)
            return
        if not callable(callback):
            raise TypeError("event listener must be callable")
        self._listeners[event] = callback

    def run(self):
        """
        spawn the child and return the asyncio.Task resolving to its terminal State.

        must be called with a running event loop; while the child runs, the same task is
        returned.
        """
        if self._task is not None and not self._task.done():
            return self._task
        self._reset()
        self._running = True
        self._task = asyncio.get_running_loop().create_task(self._supervise())
        return self._task

    async def wait(self):
        if self._task is None:
            raise RuntimeError("process was never started")
        return await self._task

    def pause(self):
        """stop the child (SIGSTOP); return False when there is nothing to pause."""
        if not self._running or self._paused or not self._pid:
            return False
        if not self._send(signals.SIGSTOP):
            return False
        self._paused = True
        self._notify("pause", ProcessEvent(self._pid, time.time()))
        return True

    def resume(self):
        """continue a paused child (SIGCONT)."""
        if not self._running or not self._paused:
            return False
        if not self._send(signals.SIGCONT):
            return False
        self._paused = False
        self._notify("resume", ProcessEvent(self._pid, time.time()))
        return True

    def kill(self, signal=signals.SIGTERM):
        """
        send a signal to the child, resuming it first when paused so that the signal is
        delivered. The run task still resolves through the normal exit path.
        """
        if not self._running or not self._pid:
            return False
        if self._paused:
            self.resume()
        return self._send(signals.Signals(signal))

    def _send(self, signal):
        logger.debug("Sending %s to %d", signal.name, self._pid)
        try:
            os.kill(self._pid, signal)
        except ProcessLookupError:
            logger.debug("Process %d is already gone", self._pid)
            return False
        return True

    def _expire(self):
        self._timer = None
        logger.debug("Timeout of %ss expired for %d", self._timeout, self._pid)
        self._did_timeout = True
        self.kill(self._timeout_signal)

    def _notify(self, event, payload):
        """call a listener from synchronous code; coroutines are scheduled."""
        if (listener := self._listeners.get(event)) is None:
            return
        result = listener(payload)
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def _dispatch(self, event, payload):
        if (listener := self._listeners.get(event)) is None:
            return
        result = listener(payload)
        if inspect.isawaitable(result):
            await result

    def _argv(self):
        if self._use_shell:
            return [self._shell, "-c", self._cmdline]
        program, *arguments = self._args
        if not self._use_path and os.sep not in program:
            program = os.path.join(os.curdir, program)
        return [program, *arguments]

    def _environment(self):
        if self._env is Unset:
            return None
        if self._replace_env:
            return dict(self._env)
        return os.environ | dict(self._env)

    def _options(self, stack):
        options = {
            "env": self._environment(),
            "start_new_session": self._new_session,
        }
        if self._cwd is not Unset:
            options["cwd"] = self._cwd
        if self._uid is not Unset:
            options["user"] = self._uid
        if self._gid is not Unset:
            options["group"] = self._gid

        if self._input is not Unset:
            payload = self._input.encode() if isinstance(self._input, str) else bytes(self._input)
            file = stack.enter_context(tempfile.TemporaryFile())
            file.write(payload)
            file.flush()
            file.seek(0)
            options["stdin"] = file
        elif self._stdin is not Unset:
            _rewind(descriptor := _descriptor(self._stdin))
            options["stdin"] = descriptor

        if self._stdout is not Unset:
            _rewind(descriptor := _descriptor(self._stdout))
            options["stdout"] = descriptor
        else:
            options["stdout"] = asyncio.subprocess.PIPE
        options["stderr"] = asyncio.subprocess.STDOUT if self._redirect_stderr else asyncio.subprocess.PIPE
        return options

    async def _supervise(self):
        loop = asyncio.get_running_loop()
        argv = self._argv()
        child = None
        try:
            with contextlib.ExitStack() as stack:
                try:
                    child = await asyncio.create_subprocess_exec(*argv, **self._options(stack))
                except FileNotFoundError as error:
                    if self._cwd is not Unset and error.filename == self._cwd:
                        raise
                    logger.debug("Cannot spawn %s: command not found", argv[0])
                    return await self._finalize(127)

            self._pid = child.pid
            logger.debug("Started %d: %s", self._pid, shlex.join(argv))
            if self._timeout is not Unset:
                self._timer = loop.call_later(self._timeout, self._expire)

            readers = []
            if child.stdout is not None:
                readers.append(self._read(child.stdout, "stdout"))
            if child.stderr is not None:
                readers.append(self._read(child.stderr, "stderr"))
            await asyncio.gather(*readers)
            return await self._finalize(await child.wait())
        finally:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            if child is not None and child.returncode is None:
                logger.debug("Killing %d", child.pid)
                with contextlib.suppress(ProcessLookupError):
                    child.kill()
                await child.wait()
            self._running = False
            self._paused = False

    async def _read(self, stream, channel):
        """read one pipe until end of stream, delivering or buffering its content."""
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        listener = self._listeners.get(channel)
        chunks = []
        pending, since = "", None

        async def deliver(content, timestamp):
            nonlocal pending, since
            if not content:
                return
            self._received[channel] = True
            if listener is None:
                chunks.append(content)
            elif not self._line_buffered:
                await self._dispatch(channel, OutputEvent(self._pid, timestamp, content))
            else:
                lines, incomplete = split_lines(content, pending, self._skip_blank_lines)
                for index, line in enumerate(lines):
                    started = since if index == 0 and pending else timestamp
                    await self._dispatch(channel, OutputEvent(self._pid, started, line))
                if incomplete and (not pending or lines):
                    since = timestamp
                pending = incomplete

        while data := await stream.read(self._buffer_size):
            await deliver(decoder.decode(data), time.time())
        await deliver(decoder.decode(b"", final=True), time.time())

        if listener is None:
            content = "".join(chunks)
            if self._skip_blank_lines:
                content = _BLANK_LINES.sub("", content)
            if self._trim:
                content = content.strip()
            self._output[channel] = content
        elif self._line_buffered and pending:
            await self._dispatch(channel, OutputEvent(self._pid, since, pending))
        logger.debug("End of %s for %d", channel, self._pid)

    async def _finalize(self, returncode):
        # the child is gone; a late timer must not mark it as timed out
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._exit_code = returncode
        if returncode < 0:
            with contextlib.suppress(ValueError):
                self._signal = signals.Signals(-returncode).name
        logger.debug("Process %d exited with %d (signal=%s, timeout=%s)",
                      self._pid, self._exit_code, self._signal, self._did_timeout)

        if self._exit_code == 127:
            channel = "stdout" if self._redirect_stderr else "stderr"
            if not self._received[channel]:
                if channel in self._listeners:
                    await self._dispatch(channel, OutputEvent(self._pid, time.time(), COMMAND_NOT_FOUND))
                else:
                    self._output[channel] = COMMAND_NOT_FOUND

        if self._stdout is not Unset:
            _rewind(_descriptor(self._stdout))
        self._running = False
        self._paused = False
        state = self.state
        await self._dispatch("exit", state)
        return state

    def __repr__(self):
        return f"Process({self._cmdline!r}, pid={self._pid}, running={self._running})"


async def exec(cmdline, *, ignore_error=False, **options):
    """
    run a command and return its (buffered) stdout.

    raises ProcessError (message = stderr, state = final State) when the exit code is not
    0, unless ignore_error is True.

    left out of __all__ so that `from qel import *` keeps the builtin exec; import it
    from qel.process.
    """
    process = Process(cmdline, **options)
    state = await process.run()
    if state.exit_code != 0 and not ignore_error:
        message = process.stderr
        if not message and state.exit_code == 127:
            message = COMMAND_NOT_FOUND
        raise ProcessError(message, state=state)
    return process.stdout


async def waitpid(pid, poll=0.25):
    """
    wait until pid no longer exists, probing it with signal 0 every poll seconds.

    a terminated child of the current process exists until it is reaped.
    """
    while True:
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            return
        except PermissionError:
            # alive, owned by another user
            pass
        await asyncio.sleep(poll)


__all__ = (
    "State",
    "OutputEvent",
    "ProcessEvent",
    "Process",
    "waitpid",
    "split_lines",
)
