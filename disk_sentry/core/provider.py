from abc import ABC, abstractmethod
from contextlib import contextmanager
from enum import Enum
from typing import Any, Iterator, List, Optional
from .events import DeviceRef

class EventKind(Enum):
    CREATION = "Creation"
    DELETION = "Deletion"

class EventSubscription(ABC):
    """One intrinsic event subscription on the physical-disk class."""

    @abstractmethod
    def poll(self, timeout_ms: int) -> Optional[DeviceRef]:
        """Wait up to timeout_ms for the next event. Returns None when the slice expires."""

    def close(self):
        """Unsubscribe and stop the subscription."""

class DiskProvider(ABC):
    """
    Instrumentation backend the engine queries.
    Query failures raise SourceMiss; an unreachable service raises ProviderUnavailable.
    """

    @contextmanager
    def thread_context(self) -> Iterator[None]:
        """Per-thread setup around provider use (COM apartment on Windows)."""
        yield

    @abstractmethod
    def subscribe(self, kind: EventKind, within_s: int) -> EventSubscription:
        """Open a creation or deletion subscription scoped to the disk class."""

    @abstractmethod
    def rebind(self, ref: DeviceRef) -> Optional[Any]:
        """Turn an event reference into a live, queryable object; None if it no longer exists."""

    @abstractmethod
    def query(self, wql: str, namespace: Optional[str] = None) -> List[Any]:
        """Run a WQL query and return the resulting objects."""

    @abstractmethod
    def path_of(self, obj: Any) -> str:
        """Relative object path usable in an ASSOCIATORS OF query."""

    def get_property(self, obj: Any, name: str) -> Any:
        return getattr(obj, name, None)
