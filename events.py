from abc import ABC, abstractmethod

EVENT_TYPES = ("log", "status", "progress", "started", "result", "completed")


class EventSink(ABC):
    @abstractmethod
    def emit(self, event_type: str, data: dict) -> None:
        ...


class NullEventSink(EventSink):
    def emit(self, event_type: str, data: dict) -> None:
        return None


class CallbackEventSink(EventSink):
    """Hands ``{"type": ..., "data": ...}`` to a callable, synchronously."""

    def __init__(self, callback):
        self.callback = callback

    def emit(self, event_type: str, data: dict) -> None:
        self.callback({"type": event_type, "data": data})


class LoggingEventSink(EventSink):
    """Mirrors non-log events into a logger; log events are already logged."""

    def __init__(self, logger):
        self.logger = logger

    def emit(self, event_type: str, data: dict) -> None:
        if event_type == "log":
            return
        self.logger.debug(f"[EVENT] {event_type}: {data}")

