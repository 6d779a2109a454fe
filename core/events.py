"""Structured progress events.

Every sub-step start/end and every bootstrap phase transition is published
here. Subscribers get the event object; the file log always gets a
key=value line.
"""

from dataclasses import dataclass, asdict, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List

from utils.logger import sys_logger


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


@dataclass(frozen=True)
class ProgressEvent:
    step: str
    host: str
    outcome: str  # START | OK | FAIL | CRASH | PHASE
    message: str = ""
    ts: str = field(default_factory=_now)

    def dict(self) -> Dict[str, Any]:
        return asdict(self)


Subscriber = Callable[[ProgressEvent], None]


class EventBus:
    def __init__(self):
        self._subscribers: List[Subscriber] = []

    def subscribe(self, subscriber: Subscriber) -> None:
        self._subscribers.append(subscriber)

    def unsubscribe(self, subscriber: Subscriber) -> None:
        if subscriber in self._subscribers:
            self._subscribers.remove(subscriber)

    def emit(self, event: ProgressEvent) -> None:
        sys_logger.info(
            f"EVENT step='{event.step}' host='{event.host}' outcome='{event.outcome}' message='{event.message}'"
        )
        for subscriber in list(self._subscribers):
            try:
                subscriber(event)
            except Exception:
                # subscribers must not break a bootstrap
                sys_logger.warning(f"Event subscriber {subscriber!r} failed", exc_info=True)

    def publish(self, step: str, host: str, outcome: str, message: str = "") -> ProgressEvent:
        event = ProgressEvent(step=step, host=host, outcome=outcome, message=message)
        self.emit(event)
        return event


event_bus = EventBus()
