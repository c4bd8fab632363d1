# engine/events.py
from typing import Any, Dict, List, Protocol, Tuple


class EventPublisher(Protocol):
    def publish(self, topic: str, payload: Dict[str, Any]) -> None: ...


class NullPublisher:
    def publish(self, topic: str, payload: Dict[str, Any]) -> None:
        return None


class RecordingPublisher:
    """Keeps every published event in order. Handy for tests and local runs."""

    def __init__(self):
        self.events: List[Tuple[str, Dict[str, Any]]] = []

    def publish(self, topic: str, payload: Dict[str, Any]) -> None:
        self.events.append((topic, dict(payload)))

    def topics(self) -> List[str]:
        return [t for t, _ in self.events]
