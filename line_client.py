"""CRLF line client used to drive :class:`mock_irc.MockIRC` from tests.

The client connects over a plain TCP socket and runs a background reader
thread that splits the incoming stream into lines.  Each line is queued for
:meth:`LineClient.read_line` and, when a callback was supplied, forwarded to
it as well.  There is no protocol handling beyond line framing.
"""

import logging
import queue
import socket
import threading

from typing import Callable, Optional

_LOG = logging.getLogger(__name__)

ENCODING = 'utf-8'
RECV_SIZE = 4096


class LineClient:
    """Minimal line-oriented TCP client.

    Parameters
    ----------
    on_line_callback : Callable[[str], None], optional
        Invoked from the reader thread with each received line, without
        its terminator.
    on_disconnect_callback : Callable[[], None], optional
        Invoked once when the connection is closed by either side.
    """

    def __init__(self, on_line_callback: Optional[Callable[[str], None]] = None,
                 on_disconnect_callback: Optional[Callable[[], None]] = None):
        self.on_line = on_line_callback
        self.on_disconnect = on_disconnect_callback

        # socket created on connect()
        self._sock: Optional[socket.socket] = None

        # thread for reading incoming data
        self._rx_thread: Optional[threading.Thread] = None

        # event to signal termination
        self._stop_event = threading.Event()

        # lock protecting writes to the underlying socket
        self._send_lock = threading.Lock()

        # lines received but not yet consumed by read_line()
        self._lines: "queue.Queue[str]" = queue.Queue()

    @property
    def connected(self) -> bool:
        return self._sock is not None

    def connect(self, host: str, port: int, timeout: float = 10.0) -> None:
        """Connect to ``host:port`` and start the reader thread.

        Parameters
        ----------
        host : str
            Hostname or IP address of the server.
        port : int
            Port number of the server.
        timeout : float, optional
            Maximum number of seconds to wait for the connection.
        """
        if self._sock:
            raise RuntimeError("Already connected")
        sock = socket.create_connection((host, port), timeout=timeout)
        # reads block in the reader thread; close() unblocks them
        sock.settimeout(None)

        self._sock = sock
        self._stop_event.clear()
        self._rx_thread = threading.Thread(target=self._reader_loop, args=(sock,), daemon=True)
        self._rx_thread.start()

    def _reader_loop(self, sock: socket.socket) -> None:
        """Background thread splitting the byte stream into lines.

        Lines end at ``\\n``; a preceding ``\\r`` is dropped.  The loop exits
        when the stop event is set, the peer closes the connection or a
        socket error occurs.
        """
        buf = b''
        try:
            while not self._stop_event.is_set():
                try:
                    data = sock.recv(RECV_SIZE)
                except OSError as exc:
                    if not self._stop_event.is_set():
                        _LOG.debug("recv failed: %s", exc)
                    break
                if not data:
                    break
                buf += data
                while b'\n' in buf:
                    raw, buf = buf.split(b'\n', 1)
                    if raw.endswith(b'\r'):
                        raw = raw[:-1]
                    self._emit(raw.decode(ENCODING, errors='replace'))
        finally:
            self.close()
            if self.on_disconnect is not None:
                self.on_disconnect()

    def _emit(self, line: str) -> None:
        self._lines.put(line)
        if self.on_line is not None:
            self.on_line(line)

    def send_line(self, line: str) -> None:
        """Send a line of text to the server followed by CRLF."""
        sock = self._sock
        if not sock:
            raise RuntimeError("Not connected")
        data = (line + '\r\n').encode(ENCODING)
        with self._send_lock:
            sock.sendall(data)

    def read_line(self, timeout: Optional[float] = None) -> str:
        """Return the next received line.

        Raises :class:`queue.Empty` if nothing arrives within ``timeout``.
        """
        return self._lines.get(timeout=timeout)

    def close(self) -> None:
        """Close the connection and signal the reader thread to exit."""
        self._stop_event.set()
        with self._send_lock:
            sock, self._sock = self._sock, None
        if sock is None:
            return
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            # already disconnected
            pass
        sock.close()
