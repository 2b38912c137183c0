"""Scriptable mock IRC server for client integration tests.

Register the lines a client is expected to send together with the replies
the server should produce, start the server, and point the client at it::

    irc = MockIRC("mockirc.example.org", 6661)
    irc.when("PING mockirc.example.org").respond(":PONG mockirc.example.org")
    ready = irc.start()
    ready.wait()
    ...
    irc.stop()

Lines are framed by CRLF and matched verbatim; there is no protocol parsing.
The accept loop and every accepted connection run on their own daemon
threads.  Shutdown is cooperative: :meth:`MockIRC.stop` sets a stop event,
closes the listening socket and waits a short grace period.
"""

import enum
import logging
import socket
import threading
import time

from typing import List, Optional

from dispatcher import Dispatcher
from irc_session import Session
from trigger_registry import TriggerRegistry, WhenEvent

_LOG = logging.getLogger(__name__)

DEFAULT_PORT = 6661
DEFAULT_HOST = '127.0.0.1'
# seconds stop() waits for connection threads to notice shutdown
SHUTDOWN_GRACE = 1.0
# accept() timeout so the loop re-checks the stop event
ACCEPT_POLL_INTERVAL = 0.2


class ServerState(enum.Enum):
    """Lifecycle of a :class:`MockIRC` instance."""

    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


class MockIRC:
    """Line-oriented TCP server replying to registered triggers.

    Parameters
    ----------
    server_name : str
        Name the fake server goes by; informational only.
    port : int, optional
        TCP port to listen on.  ``0`` selects :data:`DEFAULT_PORT`.
    host : str, optional
        Interface to bind.
    shutdown_grace : float, optional
        Seconds :meth:`stop` sleeps after closing the listening socket.
    """

    def __init__(self, server_name: str, port: int = 0, *, host: str = DEFAULT_HOST,
                 shutdown_grace: float = SHUTDOWN_GRACE):
        self.server_name = server_name
        self.port = port or DEFAULT_PORT
        self.host = host
        self.shutdown_grace = shutdown_grace
        self.registry = TriggerRegistry()

        self._srv: Optional[socket.socket] = None
        self._thr: Optional[threading.Thread] = None
        self._stop = threading.Event()
        self._ready = threading.Event()
        self._state = ServerState.IDLE

        # guards _state, _last_session and _unmatched
        self._lock = threading.Lock()
        self._last_session: Optional[Session] = None
        self._unmatched: List[str] = []

        self._dispatcher = Dispatcher(self.registry, self._stop, self._record_unmatched)

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------
    def when(self, trigger: str) -> WhenEvent:
        """Register ``trigger`` and return a builder for its replies.

        Example: ``irc.when("NICK kyle").respond("R1").respond("R2")``.
        Registering the same trigger again starts a new, empty reply list.
        """
        return self.registry.when(trigger)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    @property
    def state(self) -> ServerState:
        return self._state

    @property
    def running(self) -> bool:
        return self._state is ServerState.RUNNING and not self._stop.is_set()

    def start(self) -> threading.Event:
        """Bind the listening socket and spawn the accept loop.

        Returns
        -------
        threading.Event
            Set once the accept loop is running.

        Raises
        ------
        OSError
            If the socket cannot be bound; the server stays idle.
        RuntimeError
            If the server was already started.  Restarting is not supported.
        """
        with self._lock:
            if self._state is not ServerState.IDLE:
                raise RuntimeError(f"Server already {self._state.value}")
            self._state = ServerState.STARTING

        s = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            s.bind((self.host, self.port))
            s.listen()
        except OSError:
            s.close()
            with self._lock:
                self._state = ServerState.IDLE
            raise
        s.settimeout(ACCEPT_POLL_INTERVAL)
        self._srv = s
        _LOG.info("%s listening on %s:%d", self.server_name, self.host, self.port)

        with self._lock:
            self._state = ServerState.RUNNING
        self._thr = threading.Thread(target=self._run, name=f"mockirc-accept-{self.port}",
                                     daemon=True)
        self._thr.start()
        return self._ready

    def stop(self) -> None:
        """Stop accepting connections and stop replying.

        Calling this before :meth:`start`, or more than once, does nothing.
        Connection threads are given :attr:`shutdown_grace` seconds to notice
        the shutdown but are not joined.

        Raises
        ------
        OSError
            If closing the listening socket fails.
        """
        with self._lock:
            if self._state is not ServerState.RUNNING:
                return
            self._state = ServerState.STOPPING
        self._stop.set()
        srv = self._srv
        try:
            try:
                # wakes a blocked accept() on Linux
                srv.shutdown(socket.SHUT_RDWR)
            except OSError:
                # listening sockets are not connected on every platform
                pass
            srv.close()
        finally:
            with self._lock:
                self._state = ServerState.STOPPED
        _LOG.info("%s stopped", self.server_name)
        time.sleep(self.shutdown_grace)

    def __enter__(self) -> "MockIRC":
        self.start().wait()
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()

    # ------------------------------------------------------------------
    # Out-of-band writes and diagnostics
    # ------------------------------------------------------------------
    def send(self, text: str) -> None:
        """Write ``text`` to the most recently active connection.

        Skipped when the server is stopping or stopped, and only logged once
        the most recently active connection has ended.  A failed write closes that connection.
        """
        if self._stop.is_set():
            return
        with self._lock:
            session = self._last_session
        if session is None:
            _LOG.warning("send(%r) with no active connection", text)
            return
        try:
            session.write_line(text)
        except OSError as exc:
            _LOG.error("send to %s failed: %s", session.addr, exc)
            session.close()
            self._forget(session)

    @property
    def unmatched(self) -> List[str]:
        """Lines received so far that matched no trigger, oldest first.

        The log is kept for the lifetime of the server and never trimmed.
        """
        with self._lock:
            return list(self._unmatched)

    def _record_unmatched(self, line: str) -> None:
        with self._lock:
            self._unmatched.append(line)

    def _touch(self, session: Session) -> None:
        with self._lock:
            self._last_session = session

    def _forget(self, session: Session) -> None:
        with self._lock:
            if self._last_session is session:
                self._last_session = None

    # ------------------------------------------------------------------
    # Worker threads
    # ------------------------------------------------------------------
    def _run(self) -> None:
        """Accept loop; one worker thread per connection."""
        srv = self._srv
        self._ready.set()
        while not self._stop.is_set():
            try:
                conn, addr = srv.accept()
            except socket.timeout:
                continue
            except OSError as exc:
                if self._stop.is_set():
                    return
                _LOG.error("accept failed: %s", exc)
                continue
            if self._stop.is_set():
                conn.close()
                return
            session = Session(conn, addr)
            _LOG.info("connection from %s:%s", *addr[:2])
            self._touch(session)
            threading.Thread(target=self._connection_worker, args=(session,),
                             name=f"mockirc-conn-{addr[1]}", daemon=True).start()

    def _connection_worker(self, session: Session) -> None:
        """Feed each line from ``session`` to the dispatcher until it ends."""
        try:
            while not self._stop.is_set():
                try:
                    line = session.read_line()
                except OSError as exc:
                    if not self._stop.is_set():
                        _LOG.error("read from %s failed: %s", session.addr, exc)
                    return
                if line is None:
                    if not self._stop.is_set():
                        _LOG.info("%s closed the connection", session.addr)
                    return
                self._touch(session)
                if not self._dispatcher.handle(line, session):
                    return
        finally:
            session.close()
            self._forget(session)
