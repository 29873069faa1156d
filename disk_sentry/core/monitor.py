from typing import Callable, Optional
from threading import Event, Thread
from .config import config
from .errors import ProviderUnavailable
from .events import ResolvedDiskRecord
from .logger import logger

class DiskMonitor:
    """
    Calls the engine back-to-back on a background thread and hands each record
    to the callback. One event session stays open for the life of the loop, so
    subscriptions outlive WMI's polling interval; each wait is short so stop()
    takes effect promptly.
    """

    def __init__(self, engine, callback: Callable[[ResolvedDiskRecord], None],
                 wait_slice_ms: Optional[int] = None,
                 retry_delay_s: Optional[float] = None,
                 **engine_options):
        defaults = config["monitor"]
        self.engine = engine
        self.callback = callback
        self.wait_slice_ms = defaults["wait_slice_ms"] if wait_slice_ms is None else wait_slice_ms
        self.retry_delay_s = defaults["retry_delay_s"] if retry_delay_s is None else retry_delay_s
        self.engine_options = engine_options
        self.running = False
        self._stop_event = Event()
        self._thread: Optional[Thread] = None

    def start(self):
        """Start the monitoring process."""
        if self._thread and self._thread.is_alive():
            return
        self.running = True
        self._stop_event.clear()
        self._thread = Thread(target=self._monitor_loop, name="disk-sentry-monitor", daemon=True)
        self._thread.start()
        logger.info("Disk monitor started.")

    def stop(self):
        """Stop the monitoring process."""
        self.running = False
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join()
        logger.info("Disk monitor stopped.")

    def _monitor_loop(self):
        while self.running:
            try:
                with self.engine.open_session() as session:
                    while self.running:
                        record = self.engine.next_event(timeout_ms=self.wait_slice_ms, session=session,
                                                        **self.engine_options)
                        if record is not None:
                            self._notify(record)
            except ProviderUnavailable as e:
                logger.error(f"Disk events unavailable: {e}. Retrying in {self.retry_delay_s}s")
                self._stop_event.wait(self.retry_delay_s)
            except Exception as e:
                logger.exception(f"Error in disk monitor loop: {e}")
                self._stop_event.wait(self.retry_delay_s)

    def _notify(self, record: ResolvedDiskRecord):
        """Dispatch record to callback."""
        if self.running:
            self.callback(record)
