"""
loudscan Process Chain - run external stages as one logical operation.

    media ──writer──▶ stage 0 ──pipe──▶ stage 1 ──pipe──▶ ... ──▶ stage N ──reader──▶ lines

Responsibilities:
    - Spawn every stage, wiring stage i's designated stream to stage i+1's stdin
    - Feed the media from a writer thread started right after spawn
    - Consume the final stage's analysis stream line by line on a reader thread
    - Enforce one absolute deadline measured from spawn
    - Kill and reap every stage before returning or raising

INVARIANTS:
    - Exactly two helper threads per invocation (writer, reader)
    - Each invocation owns its pipes, threads and Popen handles; ProcessChain
      itself only holds the immutable ChainSpec
    - No stage is left running when run() returns, on any path
    - Nothing is retried here
"""

import logging
import os
import queue
import shutil
import signal
import subprocess
import threading
import time
from contextlib import suppress
from typing import BinaryIO, Callable

from loudscan.contracts import ChainResult, ChainSpec
from loudscan.errors import (
    NonZeroExitError,
    ProcessIOError,
    ProcessTimeoutError,
    SpawnFailure,
    ValidationError,
)


logger = logging.getLogger(__name__)

_POSIX = os.name == "posix"
_CHUNK_SIZE = 64 * 1024
# Upper bound for joining pump threads once every stage is dead
_JOIN_GRACE = 2.0

WRITER = "writer"
READER = "reader"

LineFilter = Callable[[str], bool]


class ProcessChain:
    """
    Runs a ChainSpec against media bytes.

    Safe to share between threads: every call to run() gets its own
    invocation state.
    """

    def __init__(self, spec: ChainSpec):
        self.spec = spec

    def run(
        self,
        media: bytes | BinaryIO,
        timeout: float,
        line_filter: LineFilter | None = None,
    ) -> ChainResult:
        """
        Run the chain once.

        Args:
            media: Media bytes or a readable binary stream fed to stage 0
            timeout: Absolute timeout in seconds, measured from spawn
            line_filter: Keep only analysis lines for which this returns True

        Returns:
            ChainResult with the retained analysis lines.

        Raises:
            SpawnFailure: A stage could not be started
            ProcessTimeoutError: The deadline passed before every stage exited
            ProcessIOError: Feeding or reading failed (partial output attached)
            NonZeroExitError: A stage exited non-zero (partial output attached)
        """
        if timeout <= 0:
            raise ValidationError("timeout", timeout, "must be positive")
        return _Invocation(self.spec, line_filter).run(media, timeout)


class _Invocation:
    """State of a single ProcessChain.run call."""

    def __init__(self, spec: ChainSpec, line_filter: LineFilter | None):
        self.spec = spec
        self.line_filter = line_filter
        self.procs: list[subprocess.Popen] = []
        self.analysis: BinaryIO | None = None
        self.lines: list[str] = []
        self.events: queue.Queue = queue.Queue()
        self.threads: list[threading.Thread] = []

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def run(self, media, timeout: float) -> ChainResult:
        started = time.monotonic()
        deadline = started + timeout
        try:
            self._spawn()
            logger.debug("Spawned chain [%s] pids=%s", self.spec.describe(), self._pids())
            self._start_pumps(media)
            self._await_pumps(deadline, timeout)
            self._await_exits(deadline, timeout)

            elapsed = time.monotonic() - started
            returncodes = self._returncodes()
            if any(code != 0 for code in returncodes):
                raise NonZeroExitError(
                    f"Chain stage exited non-zero {returncodes}: {self.spec.describe()}",
                    pids=self._pids(),
                    returncodes=returncodes,
                    partial_lines=list(self.lines),
                )
            logger.debug("Chain completed in %.2f sec(s), %d line(s)", elapsed, len(self.lines))
            return ChainResult(
                lines=tuple(self.lines),
                returncodes=tuple(returncodes),
                pids=tuple(self._pids()),
                elapsed=elapsed,
            )
        finally:
            self._teardown()

    def _spawn(self) -> None:
        upstream = None
        for stage in self.spec.stages:
            try:
                proc = subprocess.Popen(
                    list(stage.argv),
                    stdin=subprocess.PIPE if upstream is None else upstream,
                    stdout=subprocess.PIPE if stage.stream == "stdout" else subprocess.DEVNULL,
                    stderr=subprocess.PIPE if stage.stream == "stderr" else subprocess.DEVNULL,
                    start_new_session=_POSIX,
                )
            except OSError as e:
                self._kill_all()
                raise SpawnFailure(
                    f"Unable to start {stage.executable!r}: {e}",
                    pids=self._pids(),
                    returncodes=self._returncodes(),
                ) from e
            finally:
                # The child holds its own copy of the upstream pipe now
                if upstream is not None:
                    upstream.close()
            self.procs.append(proc)
            upstream = proc.stdout if stage.stream == "stdout" else proc.stderr
        self.analysis = upstream

    def _start_pumps(self, media) -> None:
        for name, target, args in (
            (WRITER, self._write, (media,)),
            (READER, self._read, ()),
        ):
            thread = threading.Thread(target=target, args=args, name=f"loudscan-{name}", daemon=True)
            self.threads.append(thread)
            thread.start()

    def _await_pumps(self, deadline: float, timeout: float) -> None:
        pending = {WRITER, READER}
        while pending:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                self._raise_timeout(timeout)
            try:
                source, error = self.events.get(timeout=remaining)
            except queue.Empty:
                continue
            pending.discard(source)
            if error is not None:
                self._abort()
                raise ProcessIOError(
                    f"Chain {source} failed: {error}",
                    pids=self._pids(),
                    returncodes=self._returncodes(),
                    partial_lines=list(self.lines),
                ) from error

    def _await_exits(self, deadline: float, timeout: float) -> None:
        for proc in self.procs:
            try:
                proc.wait(timeout=max(deadline - time.monotonic(), 0))
            except subprocess.TimeoutExpired:
                self._raise_timeout(timeout)

    def _raise_timeout(self, timeout: float) -> None:
        self._abort()
        raise ProcessTimeoutError(
            f"Chain timed out after {timeout:.2f}s: {self.spec.describe()}",
            timeout=timeout,
            pids=self._pids(),
            returncodes=self._returncodes(),
            partial_lines=list(self.lines),
        )

    # -------------------------------------------------------------------------
    # Pumps
    # -------------------------------------------------------------------------

    def _write(self, media) -> None:
        stdin = self.procs[0].stdin
        error = None
        try:
            if isinstance(media, (bytes, bytearray, memoryview)):
                view = memoryview(media)
                for offset in range(0, len(view), _CHUNK_SIZE):
                    stdin.write(view[offset:offset + _CHUNK_SIZE])
            else:
                shutil.copyfileobj(media, stdin, _CHUNK_SIZE)
            stdin.close()
        except Exception as e:
            # Handed to the calling thread, which raises ProcessIOError
            error = e
        finally:
            if not stdin.closed:
                # A failed flush has already been reported above
                with suppress(OSError):
                    stdin.close()
            self.events.put((WRITER, error))

    def _read(self) -> None:
        stream = self.analysis
        error = None
        try:
            for raw in stream:
                line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
                if self.line_filter is None or self.line_filter(line):
                    self.lines.append(line)
        except Exception as e:
            error = e
        finally:
            stream.close()
            self.events.put((READER, error))

    # -------------------------------------------------------------------------
    # Teardown
    # -------------------------------------------------------------------------

    def _abort(self) -> None:
        """Kill and reap every stage, then wait for both pumps."""
        self._kill_all()
        self._join_pumps()

    def _kill_all(self) -> None:
        for proc in self.procs:
            if proc.poll() is None:
                _kill(proc)
        for proc in self.procs:
            proc.wait()

    def _join_pumps(self) -> None:
        for thread in self.threads:
            thread.join(_JOIN_GRACE)
            if thread.is_alive():
                logger.warning("Pump thread %s still running after teardown", thread.name)

    def _teardown(self) -> None:
        self._abort()
        for proc in self.procs:
            if proc.stdin is not None and not proc.stdin.closed and not self._alive(WRITER):
                with suppress(OSError):
                    proc.stdin.close()
        if self.analysis is not None and not self.analysis.closed and not self._alive(READER):
            self.analysis.close()

    def _alive(self, name: str) -> bool:
        return any(t.name == f"loudscan-{name}" and t.is_alive() for t in self.threads)

    def _pids(self) -> list[int]:
        return [proc.pid for proc in self.procs]

    def _returncodes(self) -> list[int | None]:
        return [proc.returncode for proc in self.procs]


def _kill(proc: subprocess.Popen) -> None:
    """Force-kill a stage together with any children it spawned."""
    if _POSIX:
        try:
            # start_new_session makes the stage its own process group leader
            os.killpg(proc.pid, signal.SIGKILL)
            return
        except ProcessLookupError:
            return
        except PermissionError:
            pass
    proc.kill()
