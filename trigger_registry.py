"""Trigger registry for the mock IRC server.

A trigger is an exact inbound line (terminator already stripped).  Each
trigger owns an ordered list of reply lines which the dispatcher writes back
when the trigger is received.  Matching is plain string equality: no
wildcards, no case folding, no whitespace normalisation.
"""

import threading

from typing import Dict, List, Optional


class WhenEvent:
    """Chainable builder holding the replies for one trigger.

    Returned by :meth:`TriggerRegistry.when` so that registrations read as
    ``server.when("PING host").respond(":PONG host")``.
    """

    def __init__(self, event: str):
        self.event = event
        self.responses: List[str] = []

    def respond(self, response: str) -> "WhenEvent":
        """Append ``response`` to the reply list and return this builder."""
        self.responses.append(response)
        return self

    def __repr__(self) -> str:
        return f"WhenEvent({self.event!r}, responses={self.responses!r})"


class TriggerRegistry:
    """Mapping of exact trigger lines to :class:`WhenEvent` entries.

    Registrations are normally made before the server starts, but the
    mapping is guarded by a lock and lookups hand out copies, so adding
    triggers while connections are being served is also safe.
    """

    def __init__(self):
        self._events: Dict[str, WhenEvent] = {}
        self._lock = threading.Lock()

    def when(self, trigger: str) -> WhenEvent:
        """Create a fresh entry for ``trigger``, replacing any existing one.

        Parameters
        ----------
        trigger : str
            Exact line a client must send, without the trailing CRLF.

        Returns
        -------
        WhenEvent
            Empty builder; chain :meth:`WhenEvent.respond` calls on it.
        """
        event = WhenEvent(trigger)
        with self._lock:
            self._events[trigger] = event
        return event

    def register(self, trigger: str, response: str) -> WhenEvent:
        """Append ``response`` to the entry for ``trigger``, creating it if absent."""
        with self._lock:
            event = self._events.get(trigger)
            if event is None:
                event = WhenEvent(trigger)
                self._events[trigger] = event
            return event.respond(response)

    def lookup(self, line: str) -> Optional[List[str]]:
        """Return a copy of the replies for ``line`` or ``None`` when unmatched.

        A trigger registered without any replies yields an empty list, which
        is still a match.
        """
        with self._lock:
            event = self._events.get(line)
            if event is None:
                return None
            return list(event.responses)

    def __contains__(self, line: object) -> bool:
        with self._lock:
            return line in self._events

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)
