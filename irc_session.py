"""Per-connection state for the mock IRC server.

Every accepted socket gets its own :class:`Session`.  The session owns the
socket together with its buffered reader and writer; nothing about a
connection's I/O lives on the server object, so concurrent connections never
share buffers.
"""

import logging
import socket
import threading

from typing import Optional, Tuple

_LOG = logging.getLogger(__name__)

ENCODING = 'utf-8'
TERMINATOR = '\r\n'


class Session:
    """Line-buffered read/write access over one accepted connection.

    Parameters
    ----------
    conn : socket.socket
        Connected socket returned by ``accept()``.  The session takes
        ownership and closes it in :meth:`close`.
    addr : tuple
        Peer address, used for log messages only.
    """

    def __init__(self, conn: socket.socket, addr: Tuple = ()):
        self.addr = addr
        self._conn = conn
        # blocking reads; accepted sockets may inherit the listener's timeout
        self._conn.settimeout(None)
        self._reader = conn.makefile('rb')
        self._writer = conn.makefile('wb')
        # serialises dispatcher replies with out-of-band sends
        self._write_lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def read_line(self) -> Optional[str]:
        """Block until a full line arrives and return it without its terminator.

        Returns ``None`` at end of stream or once the session has been
        closed, possibly from another thread.  A trailing fragment that is
        not newline-terminated when the peer closes is discarded.  Socket
        errors propagate as :class:`OSError`.
        """
        if self._closed:
            return None
        try:
            raw = self._reader.readline()
        except ValueError:
            # reader closed by close() in another thread
            return None
        if not raw or not raw.endswith(b'\n'):
            return None
        raw = raw[:-1]
        if raw.endswith(b'\r'):
            raw = raw[:-1]
        return raw.decode(ENCODING, errors='replace')

    def write_line(self, line: str) -> None:
        """Write ``line`` followed by CRLF and flush immediately."""
        data = (line + TERMINATOR).encode(ENCODING)
        with self._write_lock:
            if self._closed:
                raise OSError(f"session {self.addr} is closed")
            self._writer.write(data)
            self._writer.flush()

    def close(self) -> None:
        """Release the reader, writer and socket.  Safe to call repeatedly."""
        with self._write_lock:
            if self._closed:
                return
            self._closed = True
        # shutdown wakes a reader blocked in another thread
        try:
            self._conn.shutdown(socket.SHUT_RDWR)
        except OSError:
            # peer already gone
            pass
        for stream in (self._writer, self._reader):
            try:
                stream.close()
            except OSError as exc:
                _LOG.debug("error closing stream for %s: %s", self.addr, exc)
        self._conn.close()

    def __repr__(self) -> str:
        state = 'closed' if self._closed else 'open'
        return f"<Session {self.addr} {state}>"
