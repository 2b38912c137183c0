"""Matches inbound lines against the trigger registry and writes replies."""

import logging
import threading

from typing import Callable, Optional

from irc_session import Session
from trigger_registry import TriggerRegistry

_LOG = logging.getLogger(__name__)


class Dispatcher:
    """Decide what, if anything, to write back for an inbound line.

    Parameters
    ----------
    registry : TriggerRegistry
        Source of canned replies.
    stop_event : threading.Event
        Set by the server when shutdown begins; lines arriving afterwards
        are dropped without a reply.
    on_unmatched : Callable[[str], None], optional
        Invoked with every line that has no trigger.
    """

    def __init__(self, registry: TriggerRegistry, stop_event: threading.Event,
                 on_unmatched: Optional[Callable[[str], None]] = None):
        self.registry = registry
        self._stop_event = stop_event
        self._on_unmatched = on_unmatched

    def handle(self, line: str, session: Session) -> bool:
        """Process one line for ``session``.

        Returns ``False`` when a reply could not be written and the
        connection should stop being served, ``True`` otherwise.
        """
        if self._stop_event.is_set():
            return True
        _LOG.debug("%s -> %r", session.addr, line)
        responses = self.registry.lookup(line)
        if responses is None:
            _LOG.info("Nothing to do for %s", line)
            if self._on_unmatched is not None:
                self._on_unmatched(line)
            return True
        for response in responses:
            try:
                session.write_line(response)
            except OSError as exc:
                _LOG.error("write to %s failed: %s", session.addr, exc)
                return False
        return True
