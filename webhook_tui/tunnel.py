"""
Tunnel Session Manager - localtunnel subprocess, expiry timer and reconnect
"""
import os
import re
import sys
import shutil
import signal
import subprocess
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Union

import psutil

from .log import Logger, get_logger
from .models import TunnelSession

URL_RE = re.compile(r"(https://[^\r\n]*)")


class TunnelError(RuntimeError):
    """Raised when the tunnel cannot be started or reconnected."""


@dataclass(frozen=True)
class TunnelStarted:
    url: str
    generation: int
    started_at: datetime


@dataclass(frozen=True)
class TunnelFailed:
    message: str
    generation: int = 0


@dataclass(frozen=True)
class TunnelExpired:
    generation: int


TunnelResult = Union[TunnelStarted, TunnelFailed]


def build_command(port: int, subdomain: str = '') -> List[str]:
    """npx localtunnel command line for a port and optional subdomain."""
    npx = shutil.which('npx')
    if not npx:
        raise TunnelError(
            "npx not found. Install Node.js (which includes npm/npx) to expose the server publicly."
        )
    cmd = [npx, 'localtunnel', '--port', str(port)]
    if subdomain:
        cmd += ['--subdomain', subdomain]
    return cmd


def parse_tunnel_url(line: str) -> Optional[str]:
    """Public URL announced on a line of tunnel output, if any."""
    m = URL_RE.search(line)
    if not m:
        return None
    return m.group(1).strip()


class TunnelProcess:
    """An external tunnel process running in its own process group."""

    def __init__(self, cmd: List[str]):
        self.cmd = cmd
        self.process: Optional[subprocess.Popen] = None
        self._terminated = False
        self._lock = threading.Lock()

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid if self.process else None

    @property
    def stdout(self):
        return self.process.stdout if self.process else None

    def start(self):
        kwargs = {}
        if sys.platform == 'win32':
            kwargs['creationflags'] = subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            # Own session so the whole npx -> node tree can be signalled at once.
            kwargs['start_new_session'] = True
        self.process = subprocess.Popen(
            self.cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            stdin=subprocess.DEVNULL,
            text=True,
            bufsize=1,
            **kwargs,
        )

    def is_alive(self) -> bool:
        if not self.process or self.process.poll() is not None:
            return False
        try:
            return psutil.Process(self.process.pid).status() != psutil.STATUS_ZOMBIE
        except psutil.NoSuchProcess:
            return False

    def terminate(self, wait: float = 3.0) -> bool:
        """Signal the process group, then force-kill the leader.

        Returns False when the process was already terminated.
        """
        with self._lock:
            if self._terminated or not self.process:
                return False
            self._terminated = True

        pid = self.process.pid
        if sys.platform == 'win32':
            self._kill_tree(pid)
        else:
            try:
                os.killpg(pid, signal.SIGTERM)
            except (ProcessLookupError, PermissionError):
                pass
            try:
                psutil.Process(pid).kill()
            except psutil.NoSuchProcess:
                pass

        try:
            self.process.wait(timeout=wait)
        except subprocess.TimeoutExpired:
            pass
        return True

    @staticmethod
    def _kill_tree(pid: int):
        try:
            parent = psutil.Process(pid)
        except psutil.NoSuchProcess:
            return
        for child in parent.children(recursive=True):
            try:
                child.kill()
            except psutil.NoSuchProcess:
                pass
        try:
            parent.kill()
        except psutil.NoSuchProcess:
            pass


class TunnelSessionManager:
    """Owns the tunnel session: spawn, URL discovery, expiry and reconnect.

    start() and reconnect() block until the tunnel announces its URL (no read
    timeout), so callers run them off the UI thread. Expiry is reported through
    ``on_expired`` from the timer thread.
    """

    def __init__(
        self,
        on_expired: Optional[Callable[[TunnelExpired], None]] = None,
        command_builder: Callable[[int, str], List[str]] = build_command,
        process_factory: Callable[[List[str]], TunnelProcess] = TunnelProcess,
        logger: Optional[Logger] = None,
    ):
        self.on_expired = on_expired
        self.command_builder = command_builder
        self.process_factory = process_factory
        self.logger = logger or get_logger('tunnel')
        self.session: Optional[TunnelSession] = None
        self._generation = 0
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        session = self.session
        return bool(session and session.running)

    def start(self, port: int, subdomain: str = '', timeout: float = 30 * 60) -> TunnelResult:
        """Spawn the tunnel and wait for its public URL."""
        with self._lock:
            if self.session and self.session.running:
                raise TunnelError("Tunnel is already running")
            self._cancel_timer()
            self._generation += 1
            session = TunnelSession(port=port, subdomain=subdomain, timeout=timeout, generation=self._generation)
            self.session = session

        self.logger.write(f"starting tunnel #{session.generation} port={port} subdomain={subdomain or '-'}")
        try:
            process = self.process_factory(self.command_builder(port, subdomain))
            process.start()
        except (OSError, TunnelError) as e:
            return self._fail(session, f"Failed to start localtunnel: {e}")
        session.process = process

        url = self._read_url(process)
        if url is None:
            process.terminate()
            return self._fail(session, "Failed to read tunnel URL: process exited before announcing one")

        started_at = datetime.now().astimezone()
        with self._lock:
            if self.session is not session:
                # shutdown() or a newer start() replaced us while we were reading.
                process.terminate()
                return self._fail(session, "Tunnel start was cancelled")
            session.mark_active(url, started_at)
            self._timer = threading.Timer(timeout, self.expire, args=(session.generation,))
            self._timer.daemon = True
            self._timer.start()

        self.logger.write(f"tunnel #{session.generation} active at {url} (expires in {timeout:.0f}s)")
        self._drain(process, session.generation)
        return TunnelStarted(url=url, generation=session.generation, started_at=started_at)

    def expire(self, generation: Optional[int] = None) -> bool:
        """Timer callback. No-op unless the session is running and not expired.

        A timer armed for an earlier session passes that session's generation
        and is ignored once a newer one has started.
        """
        with self._lock:
            session = self.session
            if session is None or not session.running or session.expired:
                return False
            if generation is not None and generation != session.generation:
                return False
            session.mark_expired()
            process = session.process
            self._timer = None

        if process is not None:
            process.terminate()
        self.logger.write(f"tunnel #{session.generation} expired after {session.timeout:.0f}s")
        if self.on_expired:
            self.on_expired(TunnelExpired(generation=session.generation))
        return True

    def reconnect(self) -> TunnelResult:
        """Start a new session with the previous port, subdomain and timeout."""
        with self._lock:
            session = self.session
            if session is None:
                raise TunnelError("No tunnel has been started yet")
            if session.running:
                raise TunnelError("Tunnel is still running")
            session.expired = False
            session.error = ''
            port, subdomain, timeout = session.port, session.subdomain, session.timeout
        self.logger.write(f"reconnecting tunnel (previous #{session.generation})")
        return self.start(port, subdomain, timeout)

    def shutdown(self):
        """Terminate any live session. Safe to call more than once."""
        with self._lock:
            self._cancel_timer()
            session, self.session = self.session, None
        if session is None:
            return
        process = session.process
        session.running = False
        if process is not None and process.terminate():
            self.logger.write(f"tunnel #{session.generation} terminated on shutdown")

    def _cancel_timer(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _fail(self, session: TunnelSession, message: str) -> TunnelFailed:
        with self._lock:
            session.mark_failed(message)
        self.logger.error(f"tunnel #{session.generation}: {message}")
        return TunnelFailed(message=message, generation=session.generation)

    def _read_url(self, process: TunnelProcess) -> Optional[str]:
        stdout = process.stdout
        if stdout is None:
            return None
        for line in iter(stdout.readline, ''):
            self.logger.write(f"localtunnel: {line.rstrip()}")
            url = parse_tunnel_url(line)
            if url:
                return url
        return None

    def _drain(self, process: TunnelProcess, generation: int):
        """Keep reading tunnel output into the log so the pipe never fills."""
        stdout = process.stdout
        if stdout is None:
            return

        def _run():
            try:
                for line in iter(stdout.readline, ''):
                    self.logger.write(f"localtunnel #{generation}: {line.rstrip()}")
            except (OSError, ValueError):
                pass

        threading.Thread(target=_run, name=f"tunnel-output-{generation}", daemon=True).start()
