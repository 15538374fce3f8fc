"""
HarMock Event Hooks

The matching core reports what it does through a plain callable,
``on_event(name, fields)``, instead of writing to a logger. The mock
server plugs in LoggingEventSink; tests can pass a list recorder.

Events:
- archive_loaded: index built (entries, skipped, signatures)
- entry_registered: entry added to the index
- entry_skipped: archive entry excluded (bad URL or shape)
- signature_collision: a later entry replaced an earlier one
- match_outcome: result of one match() call
- header_skip_error: recorded header could not be replayed
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

EventSink = Callable[[str, Dict[str, Any]], None]

WARNING_EVENTS = frozenset({'entry_skipped', 'signature_collision', 'header_skip_error'})


def null_sink(name: str, fields: Dict[str, Any]) -> None:
    """Discard events."""


def resolve_sink(on_event: Optional[EventSink]) -> EventSink:
    return on_event if on_event is not None else null_sink


class LoggingEventSink:
    """
    Event sink that writes events to a standard library logger.

    Problems with the archive (skipped entries, collisions, headers that
    could not be replayed) go out as warnings. Match outcomes are logged
    at INFO in verbose mode, otherwise DEBUG like everything else.
    """

    def __init__(self, logger: Optional[logging.Logger] = None, verbose: bool = False):
        self.logger = logger or logging.getLogger("harmock.mock")
        self.verbose = verbose

    def __call__(self, name: str, fields: Dict[str, Any]) -> None:
        if name in WARNING_EVENTS:
            level = logging.WARNING
        elif name == 'match_outcome' and self.verbose:
            level = logging.INFO
        else:
            level = logging.DEBUG

        if not self.logger.isEnabledFor(level):
            return

        details = ' '.join(f"{key}={value!r}" for key, value in fields.items())
        self.logger.log(level, f"{name} {details}".rstrip())


class EventRecorder:
    """Event sink that keeps every event in memory (useful in tests and debugging)."""

    def __init__(self):
        self.events: List[Tuple[str, Dict[str, Any]]] = []

    def __call__(self, name: str, fields: Dict[str, Any]) -> None:
        self.events.append((name, dict(fields)))

    def named(self, name: str) -> List[Dict[str, Any]]:
        """Return the fields of every recorded event with this name."""
        return [fields for event_name, fields in self.events if event_name == name]
