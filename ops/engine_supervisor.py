"""
Queue engine process supervisor.

Launches the external queue engine as a child process with captured
stdin/stdout/stderr, waits for its READY sentinel, pumps its output to
listeners, records unexpected exits, and tears it down synchronously.

Exactly one engine process is supervised at a time.

Usage:
    supervisor = EngineSupervisor(["java", "-cp", "backend-java", "Main"])
    supervisor.add_line_listener(observer.handle_line)
    supervisor.start()              # blocks until READY or timeout
    supervisor.write_line("COMPLETE\\n")
    supervisor.shutdown()           # terminate + wait, no orphan
"""

from __future__ import annotations

import logging
import subprocess
import threading
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from core.exceptions import EngineLaunchError, ProcessUnavailableError, StartupTimeoutError
from core.structured_log import jlog
from kitchen.protocol import READY_SENTINEL, LineFramer

logger = logging.getLogger(__name__)

LineListener = Callable[[str], None]
ExitListener = Callable[[Optional[int]], None]


class EngineState(str, Enum):
    """Engine process lifecycle states."""
    STOPPED = "stopped"     # Never started, or shut down on purpose
    STARTING = "starting"   # Launched, waiting for READY
    READY = "ready"         # Handshake done, accepting commands
    STOPPING = "stopping"   # Shutdown in progress
    EXITED = "exited"       # Died on its own


class EngineSupervisor:
    """
    Supervisor for the single queue engine child process.

    Thread model:
    - start()/shutdown()/restart() are serialized by a lifecycle lock
    - a stdout reader thread frames lines and handles the READY handshake
    - a stderr reader thread logs engine errors
    - write_line() is serialized by a write lock
    """

    READER_JOIN_TIMEOUT = 2.0

    def __init__(
        self,
        command: Sequence[str],
        cwd: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None,
        ready_sentinel: str = READY_SENTINEL,
        startup_timeout: float = 10.0,
        shutdown_timeout: float = 5.0,
        max_line_bytes: int = 1024 * 1024,
    ):
        if not command:
            raise ValueError("engine command must not be empty")
        self.command = list(command)
        self.cwd = cwd
        self.env = dict(env) if env is not None else None
        self.ready_sentinel = ready_sentinel
        self.startup_timeout = startup_timeout
        self.shutdown_timeout = shutdown_timeout
        self.max_line_bytes = max_line_bytes

        self._process: Optional[subprocess.Popen] = None
        self._state = EngineState.STOPPED
        self._stopping = False
        self._handshake = threading.Event()
        self._lifecycle_lock = threading.RLock()
        self._write_lock = threading.Lock()
        self._threads: List[threading.Thread] = []

        self._line_listeners: List[LineListener] = []
        self._exit_listeners: List[ExitListener] = []

        self.exit_code: Optional[int] = None
        self.started_at: Optional[datetime] = None
        self.starts = 0
        self.unexpected_exits = 0

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_line_listener(self, callback: LineListener) -> None:
        """Receive every complete stdout line except the READY sentinel."""
        self._line_listeners.append(callback)

    def add_exit_listener(self, callback: ExitListener) -> None:
        """Receive the exit code when the engine dies unexpectedly."""
        self._exit_listeners.append(callback)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def pid(self) -> Optional[int]:
        proc = self._process
        return proc.pid if proc is not None else None

    @property
    def is_running(self) -> bool:
        proc = self._process
        return proc is not None and proc.poll() is None

    @property
    def is_writable(self) -> bool:
        proc = self._process
        return (
            proc is not None
            and self._state == EngineState.READY
            and proc.poll() is None
            and proc.stdin is not None
            and not proc.stdin.closed
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """
        Launch the engine and block until it prints the READY sentinel.

        Raises:
            EngineLaunchError: executable missing, or engine died before READY
            StartupTimeoutError: READY not seen within startup_timeout
        """
        with self._lifecycle_lock:
            if self.is_running:
                logger.warning("Engine already running; start() ignored")
                return

            self._handshake.clear()
            self._stopping = False
            self._state = EngineState.STARTING
            self.exit_code = None

            logger.info(f"Starting queue engine: {' '.join(self.command)}")
            try:
                proc = subprocess.Popen(
                    self.command,
                    stdin=subprocess.PIPE,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    cwd=self.cwd,
                    env=self.env,
                )
            except OSError as e:
                self._state = EngineState.STOPPED
                jlog("engine_launch_failed", level="CRITICAL", command=self.command, error=str(e))
                raise EngineLaunchError(
                    f"Failed to launch queue engine: {e}",
                    context={"command": " ".join(self.command)},
                    cause=e,
                ) from e

            self._process = proc
            self.starts += 1
            self._threads = [
                threading.Thread(target=self._pump_stdout, args=(proc,), name="engine-stdout", daemon=True),
                threading.Thread(target=self._pump_stderr, args=(proc,), name="engine-stderr", daemon=True),
            ]
            for t in self._threads:
                t.start()
            jlog("engine_started", pid=proc.pid, command=self.command)

            self._handshake.wait(self.startup_timeout)

            if self._state == EngineState.READY:
                return

            if proc.poll() is not None:
                code = proc.returncode
                self._teardown(proc)
                raise EngineLaunchError(
                    "Queue engine exited before READY",
                    context={"exit_code": code},
                )

            logger.error(f"Queue engine did not emit {self.ready_sentinel} within {self.startup_timeout}s; killing it")
            self._teardown(proc)
            jlog("engine_startup_timeout", level="CRITICAL", timeout=self.startup_timeout)
            raise StartupTimeoutError(
                f"Queue engine did not emit {self.ready_sentinel} in time",
                context={"timeout_seconds": self.startup_timeout},
            )

    def shutdown(self) -> Optional[int]:
        """
        Synchronously terminate the engine. Safe to call more than once.

        Returns:
            The engine exit code, if it was running
        """
        with self._lifecycle_lock:
            proc = self._process
            if proc is None:
                self._state = EngineState.STOPPED
                return self.exit_code
            logger.info(f"Stopping queue engine (pid {proc.pid})")
            code = self._teardown(proc)
            jlog("engine_stopped", pid=proc.pid, exit_code=code)
            return code

    def restart(self) -> None:
        """Tear down the current engine (if any) and start a fresh one."""
        with self._lifecycle_lock:
            self.shutdown()
            self.start()

    def _teardown(self, proc: subprocess.Popen) -> Optional[int]:
        self._stopping = True
        self._state = EngineState.STOPPING

        with self._write_lock:
            try:
                if proc.stdin is not None and not proc.stdin.closed:
                    proc.stdin.close()
            except OSError:
                pass

        if proc.poll() is None:
            proc.terminate()
            try:
                proc.wait(timeout=self.shutdown_timeout)
            except subprocess.TimeoutExpired:
                logger.warning(f"Engine pid {proc.pid} ignored terminate; killing")
                proc.kill()
                proc.wait()

        current = threading.current_thread()
        for t in self._threads:
            if t is not current:
                t.join(timeout=self.READER_JOIN_TIMEOUT)
        self._threads = []

        for stream in (proc.stdout, proc.stderr):
            if stream is not None:
                try:
                    stream.close()
                except OSError:
                    pass

        self.exit_code = proc.returncode
        if self._process is proc:
            self._process = None
        self._state = EngineState.STOPPED
        self._handshake.set()
        return self.exit_code

    # ------------------------------------------------------------------
    # Input
    # ------------------------------------------------------------------

    def write_line(self, line: str) -> None:
        """
        Write one encoded command line to the engine's stdin.

        Raises:
            ProcessUnavailableError: engine not running, not READY, or pipe broken
        """
        if not line.endswith("\n"):
            line += "\n"
        with self._write_lock:
            proc = self._process
            if proc is None or not self.is_writable:
                raise ProcessUnavailableError(
                    "Queue engine is not running or not writable",
                    context={"state": self._state.value},
                )
            try:
                proc.stdin.write(line.encode("utf-8"))
                proc.stdin.flush()
            except (OSError, ValueError) as e:
                raise ProcessUnavailableError(
                    f"Write to queue engine failed: {e}",
                    context={"state": self._state.value},
                    cause=e,
                ) from e

    # ------------------------------------------------------------------
    # Output pumps
    # ------------------------------------------------------------------

    def _pump_stdout(self, proc: subprocess.Popen) -> None:
        framer = LineFramer(max_line_bytes=self.max_line_bytes)
        stream = proc.stdout
        while True:
            try:
                chunk = stream.read1(65536)
            except (OSError, ValueError):
                break
            if not chunk:
                break
            for line in framer.feed(chunk):
                self._dispatch_line(line)
        tail = framer.flush()
        if tail:
            self._dispatch_line(tail)
        self._on_stdout_closed(proc)

    def _pump_stderr(self, proc: subprocess.Popen) -> None:
        stream = proc.stderr
        try:
            for raw in iter(stream.readline, b""):
                text = raw.decode("utf-8", errors="replace").rstrip()
                if text:
                    logger.warning(f"Engine stderr: {text}")
        except (OSError, ValueError):
            pass

    def _dispatch_line(self, line: str) -> None:
        if self._state == EngineState.STARTING and line.strip() == self.ready_sentinel:
            self.started_at = datetime.now(timezone.utc)
            self._state = EngineState.READY
            logger.info("Queue engine is ready")
            jlog("engine_ready", pid=self.pid)
            self._handshake.set()
            return
        for callback in self._line_listeners:
            try:
                callback(line)
            except Exception:
                logger.exception("Engine line listener failed")

    def _on_stdout_closed(self, proc: subprocess.Popen) -> None:
        code = proc.wait()
        if self._stopping or self._process is not proc:
            return
        if self._state == EngineState.STARTING:
            # start() reports a death before READY itself
            self._handshake.set()
            return

        self.exit_code = code
        self.unexpected_exits += 1
        self._state = EngineState.EXITED
        self._handshake.set()
        logger.error(f"Queue engine exited with code {code}")
        jlog("engine_exited", level="ERROR", pid=proc.pid, exit_code=code)

        for callback in self._exit_listeners:
            try:
                callback(code)
            except Exception:
                logger.exception("Engine exit listener failed")

    # ------------------------------------------------------------------
    # Monitoring
    # ------------------------------------------------------------------

    def status(self) -> Dict[str, Any]:
        started = self.started_at
        uptime = None
        if started is not None and self._state == EngineState.READY:
            uptime = (datetime.now(timezone.utc) - started).total_seconds()
        return {
            "state": self._state.value,
            "pid": self.pid,
            "exit_code": self.exit_code,
            "starts": self.starts,
            "unexpected_exits": self.unexpected_exits,
            "started_at": started.isoformat() if started else None,
            "uptime_seconds": uptime,
        }

    def __enter__(self) -> "EngineSupervisor":
        self.start()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.shutdown()
