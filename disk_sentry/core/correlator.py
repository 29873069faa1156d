"""
Attach/detach detection.

Two listeners (creation, deletion) run on their own threads and race to set a
single wake-up Event. Only the first event per call is kept; anything the
losing listener sees in the same window is dropped. Callers that need a rapid
sequence of events should hold an EventSession, which keeps one pair of
subscriptions open across waits and queues every event.
"""
import queue
from dataclasses import dataclass
from threading import Event, Lock, Thread
from typing import List, Optional
from .errors import ProviderUnavailable
from .events import DeviceRef, EventType
from .logger import logger
from .provider import DiskProvider, EventKind

@dataclass
class CorrelatedEvent:
    event_type: EventType
    ref: DeviceRef

class _WaitState:
    """Shared between the caller and both listeners for one wait."""

    def __init__(self):
        self.fired = Event()
        self.done = Event()
        self._lock = Lock()
        self.winner: Optional[CorrelatedEvent] = None
        self.error: Optional[BaseException] = None

    def offer(self, event_type: EventType, ref: DeviceRef) -> bool:
        with self._lock:
            if self.winner is not None or self.error is not None:
                return False
            self.winner = CorrelatedEvent(event_type, ref)
        self.fired.set()
        return True

    def fail(self, error: BaseException):
        with self._lock:
            if self.error is None and self.winner is None:
                self.error = error
        self.fired.set()

class _QueueState:
    """Shared between an EventSession and its listeners; keeps every event."""

    def __init__(self):
        self.done = Event()
        self.events: "queue.Queue[Optional[CorrelatedEvent]]" = queue.Queue()
        self._lock = Lock()
        self.error: Optional[BaseException] = None

    def offer(self, event_type: EventType, ref: DeviceRef) -> bool:
        self.events.put(CorrelatedEvent(event_type, ref))
        return True

    def fail(self, error: BaseException):
        with self._lock:
            if self.error is None:
                self.error = error
        # Wake a blocked wait
        self.events.put(None)

class _Listener(Thread):
    def __init__(self, provider: DiskProvider, kind: EventKind, event_type: EventType,
                 within_s: int, slice_ms: int, state, once: bool = True):
        super().__init__(name=f"disk-sentry-{kind.value.lower()}", daemon=True)
        self.provider = provider
        self.kind = kind
        self.event_type = event_type
        self.within_s = within_s
        self.slice_ms = slice_ms
        self.state = state
        self.once = once
        self.started_event = Event()

    def run(self):
        try:
            with self.provider.thread_context():
                self._listen()
        except BaseException as e:
            self.state.fail(e)
        finally:
            self.started_event.set()

    def _listen(self):
        try:
            subscription = self.provider.subscribe(self.kind, self.within_s)
        except BaseException as e:
            self.state.fail(e)
            return
        finally:
            self.started_event.set()

        try:
            while not self.state.done.is_set():
                ref = subscription.poll(self.slice_ms)
                if ref is None:
                    continue
                if self.state.offer(self.event_type, ref):
                    logger.debug(f"{self.event_type.value} event received: {ref.device_id or ref.path}")
                else:
                    logger.debug(f"Dropped {self.event_type.value} event that arrived after the first one")
                if self.once:
                    return
        except BaseException as e:
            self.state.fail(e)
        finally:
            try:
                subscription.close()
            except Exception as e:
                logger.debug(f"Error closing {self.kind.value} subscription: {e}")

def _start_listeners(provider: DiskProvider, within_s: int, slice_ms: int,
                     state, once: bool) -> List[_Listener]:
    listeners = [
        _Listener(provider, EventKind.CREATION, EventType.ATTACHED, within_s, slice_ms, state, once),
        _Listener(provider, EventKind.DELETION, EventType.DETACHED, within_s, slice_ms, state, once),
    ]
    for listener in listeners:
        listener.start()
    for listener in listeners:
        listener.started_event.wait()
    return listeners

def _stop_listeners(state, listeners: List[_Listener]):
    state.done.set()
    for listener in listeners:
        if listener.is_alive():
            listener.join()

def _raise_error(error: BaseException):
    if isinstance(error, ProviderUnavailable):
        raise error
    raise ProviderUnavailable(f"Disk event subscription failed: {error}") from error

class EventCorrelator:
    def __init__(self, provider: DiskProvider, within_s: int = 2, slice_ms: int = 500):
        self.provider = provider
        self.within_s = within_s
        self.slice_ms = slice_ms

    def wait_for_event(self, timeout_ms: Optional[int] = None) -> Optional[CorrelatedEvent]:
        """
        Block until a disk is attached or detached.
        Returns None when timeout_ms elapses first; None waits forever.
        Raises ProviderUnavailable if either subscription cannot run.
        """
        state = _WaitState()
        listeners: List[_Listener] = []
        try:
            listeners = _start_listeners(self.provider, self.within_s, self.slice_ms, state, once=True)
            self._raise_if_failed(state)

            timeout_s = None if timeout_ms is None else timeout_ms / 1000.0
            state.fired.wait(timeout_s)
            self._raise_if_failed(state)
            return state.winner
        finally:
            _stop_listeners(state, listeners)

    def session(self) -> "EventSession":
        return EventSession(self.provider, self.within_s, self.slice_ms)

    def _raise_if_failed(self, state: _WaitState):
        if state.winner is None and state.error is not None:
            _raise_error(state.error)

class EventSession:
    """
    One creation and one deletion subscription kept open across many waits.

    WMI serves WITHIN subscriptions by polling, so a subscription needs to
    outlive at least one polling interval to report anything. Events that
    arrive between waits are queued, not dropped.
    """

    def __init__(self, provider: DiskProvider, within_s: int = 2, slice_ms: int = 500):
        self.provider = provider
        self.within_s = within_s
        self.slice_ms = slice_ms
        self._state: Optional[_QueueState] = None
        self._listeners: List[_Listener] = []

    def open(self) -> "EventSession":
        if self._state is not None:
            return self
        self._state = _QueueState()
        try:
            self._listeners = _start_listeners(self.provider, self.within_s, self.slice_ms,
                                               self._state, once=False)
            self._raise_if_failed()
        except BaseException:
            self.close()
            raise
        logger.debug("Disk event session opened")
        return self

    def close(self):
        if self._state is None:
            return
        _stop_listeners(self._state, self._listeners)
        self._state = None
        self._listeners = []
        logger.debug("Disk event session closed")

    def __enter__(self) -> "EventSession":
        return self.open()

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def wait_for_event(self, timeout_ms: Optional[int] = None) -> Optional[CorrelatedEvent]:
        """Next queued event, or None after timeout_ms. Raises ProviderUnavailable once a listener fails."""
        if self._state is None:
            raise ProviderUnavailable("Event session is not open")
        self._raise_if_failed()
        timeout_s = None if timeout_ms is None else timeout_ms / 1000.0
        try:
            event = self._state.events.get(timeout=timeout_s)
        except queue.Empty:
            return None
        if event is None:
            self._raise_if_failed()
        return event

    def _raise_if_failed(self):
        if self._state.error is not None:
            _raise_error(self._state.error)
