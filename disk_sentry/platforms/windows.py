import threading
from contextlib import contextmanager
from typing import Any, Dict, List, Optional
from ..core import wql
from ..core.config import config
from ..core.errors import ProviderUnavailable, SourceMiss
from ..core.events import DeviceRef
from ..core.logger import logger
from ..core.provider import DiskProvider, EventKind, EventSubscription

try:
    import wmi
    import pythoncom
    import pywintypes
except ImportError:
    wmi = None

# HRESULTs meaning the WMI service or its RPC transport is gone
_SERVICE_FAILURES = {
    0x800706BA,  # RPC_S_SERVER_UNAVAILABLE
    0x800706BE,  # RPC_S_CALL_FAILED
    0x80010108,  # RPC_E_DISCONNECTED
    0x80041015,  # WBEM_E_TRANSPORT_FAILURE
    0x80041033,  # WBEM_E_SHUTTING_DOWN
}

def _wmi_errors():
    return (wmi.x_wmi, pywintypes.com_error)

def _hresult(error) -> Optional[int]:
    """HRESULT of a com_error, or of the com_error wrapped by an x_wmi."""
    com = getattr(error, "com_error", None) or error
    code = getattr(com, "hresult", None)
    if code is None and getattr(com, "args", None):
        code = com.args[0]
    return code & 0xFFFFFFFF if isinstance(code, int) else None

def _is_service_failure(error) -> bool:
    return _hresult(error) in _SERVICE_FAILURES

def _path_token(event) -> str:
    """__PATH of the event's target instance, or one rebuilt from its DeviceID key."""
    try:
        path = event.ole_object.SystemProperties_("__PATH").Value
        if path:
            return path
    except Exception as e:
        logger.debug(f"Target instance carries no __PATH: {e}")
    device_id = getattr(event, "DeviceID", None) or ""
    if not device_id:
        return ""
    return f'{wql.DISK_CLASS}.DeviceID="{wql.escape_wql(device_id)}"'

class WmiSubscription(EventSubscription):
    def __init__(self, watcher, kind: EventKind):
        self._watcher = watcher
        self.kind = kind

    def poll(self, timeout_ms: int) -> Optional[DeviceRef]:
        if self._watcher is None:
            return None
        try:
            event = self._watcher(timeout_ms=timeout_ms)
        except wmi.x_wmi_timed_out:
            return None
        except _wmi_errors() as e:
            raise ProviderUnavailable(f"{self.kind.value} watcher failed: {e}") from e

        # Snapshot in this thread; COM objects do not cross apartments
        properties: Dict[str, Any] = {}
        for name in getattr(event, "properties", {}):
            try:
                properties[name] = getattr(event, name)
            except Exception as e:
                logger.debug(f"Could not read {name} from event: {e}")
        return DeviceRef(
            path=_path_token(event),
            device_id=str(properties.get("DeviceID") or ""),
            properties=properties,
        )

    def close(self):
        # The wmi watcher has no explicit cancel; releasing it drops the event sink
        self._watcher = None

class WindowsDiskProvider(DiskProvider):
    """
    WMI backend. Connections are per thread and live only inside thread_context(),
    which owns the COM apartment.
    """

    def __init__(self, namespace: Optional[str] = None):
        if wmi is None:
            logger.warning("WMI module not found. Windows disk monitoring will not work.")
        self.namespace = namespace or config["wmi"]["namespace"]
        self._local = threading.local()

    @contextmanager
    def thread_context(self):
        if wmi is None:
            raise ProviderUnavailable("The wmi and pywin32 packages are required on Windows.")
        depth = getattr(self._local, "depth", 0)
        if depth == 0:
            pythoncom.CoInitialize()
            self._local.connections = {}
        self._local.depth = depth + 1
        try:
            yield
        finally:
            self._local.depth -= 1
            if self._local.depth == 0:
                self._local.connections = {}
                pythoncom.CoUninitialize()

    def _connect(self, namespace: Optional[str] = None):
        namespace = namespace or self.namespace
        connections = getattr(self._local, "connections", None)
        if connections is None:
            raise ProviderUnavailable("WMI used outside of thread_context()")
        if namespace in connections:
            return connections[namespace]
        try:
            conn = wmi.WMI(namespace=namespace)
        except _wmi_errors() as e:
            if namespace == self.namespace:
                raise ProviderUnavailable(f"Cannot connect to WMI namespace {namespace}: {e}") from e
            # Optional namespaces (storage) are missing on older systems
            raise SourceMiss(f"WMI namespace {namespace} unavailable: {e}") from e
        connections[namespace] = conn
        return conn

    def subscribe(self, kind: EventKind, within_s: int) -> EventSubscription:
        conn = self._connect()
        try:
            watcher = conn.watch_for(
                notification_type=kind.value,
                wmi_class=wql.DISK_CLASS,
                delay_secs=within_s,
            )
        except _wmi_errors() as e:
            raise ProviderUnavailable(f"Cannot subscribe to {kind.value} events: {e}") from e
        logger.debug(f"Subscribed: {wql.event_query(kind.value, within_s)}")
        return WmiSubscription(watcher, kind)

    def rebind(self, ref: DeviceRef) -> Optional[Any]:
        conn = self._connect()
        if ref.device_id:
            try:
                rows = conn.query(wql.disk_by_device_id(ref.device_id))
            except _wmi_errors() as e:
                # A bare com_error comes from the connection itself, not the lookup
                if isinstance(e, pywintypes.com_error) or _is_service_failure(e):
                    raise ProviderUnavailable(f"Lost WMI connection rebinding {ref.device_id}: {e}") from e
                logger.debug(f"Rebind query failed for {ref.device_id}: {e}")
                return None
            return rows[0] if rows else None
        if ref.path:
            try:
                return wmi.WMI(moniker=ref.path)
            except _wmi_errors() as e:
                if _is_service_failure(e):
                    raise ProviderUnavailable(f"Lost WMI connection rebinding {ref.path}: {e}") from e
                logger.debug(f"Rebind by path failed for {ref.path}: {e}")
        return None

    def query(self, wql_text: str, namespace: Optional[str] = None) -> List[Any]:
        conn = self._connect(namespace)
        try:
            return list(conn.query(wql_text))
        except _wmi_errors() as e:
            if _is_service_failure(e):
                raise ProviderUnavailable(f"WMI service failed during query ({wql_text}): {e}") from e
            raise SourceMiss(f"Query failed ({wql_text}): {e}") from e

    def path_of(self, obj: Any) -> str:
        return obj.path().RelativePath

    def get_property(self, obj: Any, name: str) -> Any:
        return getattr(obj, name)
