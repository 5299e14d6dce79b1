"""
Lifecycle notifications emitted by the facade.

The facade never consumes these. A receiver implements ``log``, ``success``
and ``error``; each call is synchronous and its return value is ignored.
"""
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LifecycleEvent:
    """Payload for ``log`` and ``success`` notifications."""
    service: str
    message: str
    data: Optional[Dict[str, Any]] = None

    def as_dict(self) -> Dict[str, Any]:
        return {"service": self.service, "message": self.message, "data": self.data}


@dataclass(frozen=True)
class ErrorEvent:
    """Payload for ``error`` notifications."""
    service: str
    err: BaseException
    data: Optional[Dict[str, Any]] = None

    def as_dict(self) -> Dict[str, Any]:
        return {"service": self.service, "data": self.data, "err": self.err}


class EventSink(Protocol):
    def log(self, event: LifecycleEvent) -> None: ...

    def success(self, event: LifecycleEvent) -> None: ...

    def error(self, event: ErrorEvent) -> None: ...


class NullEventSink:
    """Receiver that drops every event."""

    def log(self, event: LifecycleEvent) -> None:
        pass

    def success(self, event: LifecycleEvent) -> None:
        pass

    def error(self, event: ErrorEvent) -> None:
        pass


class LoggingEventSink:
    """Receiver that forwards events to the ``logging`` module."""

    def __init__(self, target: Optional[logging.Logger] = None):
        self._logger = target or logger

    def log(self, event: LifecycleEvent) -> None:
        if event.data:
            self._logger.info(f"[{event.service}] {event.message} {event.data}")
        else:
            self._logger.info(f"[{event.service}] {event.message}")

    def success(self, event: LifecycleEvent) -> None:
        self._logger.info(f"[{event.service}] OK: {event.message}")

    def error(self, event: ErrorEvent) -> None:
        self._logger.error(
            f"[{event.service}] {type(event.err).__name__}: {event.err}",
            exc_info=(type(event.err), event.err, event.err.__traceback__),
        )


@dataclass
class RecordingEventSink:
    """
    Receiver that keeps every event in emission order.

    Entries are ``(kind, event)`` tuples where kind is ``"log"``,
    ``"success"`` or ``"error"``.
    """
    events: List[Tuple[str, Any]] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def _record(self, kind: str, event: Any) -> None:
        with self._lock:
            self.events.append((kind, event))

    def log(self, event: LifecycleEvent) -> None:
        self._record("log", event)

    def success(self, event: LifecycleEvent) -> None:
        self._record("success", event)

    def error(self, event: ErrorEvent) -> None:
        self._record("error", event)

    def of_kind(self, kind: str) -> List[Any]:
        with self._lock:
            return [event for k, event in self.events if k == kind]

    def messages(self, kind: str) -> List[str]:
        return [event.message for event in self.of_kind(kind)]

    def clear(self) -> None:
        with self._lock:
            self.events.clear()


class EventEmitter:
    """Binds a receiver to the facade's instance name."""

    def __init__(self, service: str, sink: Optional[EventSink] = None):
        self.service = service
        self.sink: EventSink = sink if sink is not None else LoggingEventSink()

    def log(self, message: str, data: Optional[Dict[str, Any]] = None) -> None:
        self.sink.log(LifecycleEvent(service=self.service, message=message, data=data))

    def success(self, message: str, data: Optional[Dict[str, Any]] = None) -> None:
        self.sink.success(LifecycleEvent(service=self.service, message=message, data=data))

    def error(self, err: BaseException, data: Optional[Dict[str, Any]] = None) -> None:
        self.sink.error(ErrorEvent(service=self.service, err=err, data=data))
