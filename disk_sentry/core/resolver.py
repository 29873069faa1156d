"""
Field resolution for disk records.

Every output field is computed from an ordered chain of (source, attribute)
links. Sources are looked up by role, so a chain never branches on what kind
of object backs a role. The first non-empty trimmed value wins; an exhausted
chain yields "" (or 0 for numbers).
"""
import re
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterable, List, Mapping, NamedTuple, Optional, Tuple
from .cache import LookupCache
from .errors import ProviderUnavailable
from .logger import logger

# Source roles
STRUCTURED = "structured"   # MSFT_Disk, vendor-normalized
LEGACY = "legacy"           # Win32_DiskDrive, live handle then event snapshot
MEDIA = "media"             # Win32_PhysicalMedia keyed by tag
PNP_LOOKUP = "pnpLookup"    # Win32_DiskDrive keyed by DeviceID (cached)
PNP_ENTITY = "pnpEntity"    # Win32_PnPEntity keyed by PnP id
DEVICE_PATH = "devicePath"  # parsed PnP device id

BUS_TYPES = {
    1: "SCSI",
    2: "ATAPI",
    3: "ATA",
    4: "IEEE1394",
    5: "SSA",
    6: "Fibre",
    7: "USB",
    8: "RAID",
    9: "iSCSI",
    10: "SAS",
    11: "SATA",
    17: "NVMe",
}

USB_STORAGE_MARKER = "USBSTOR"
_VENDOR_RE = re.compile(r"&VEN_([^&]*)", re.IGNORECASE)

def bus_type_to_string(code: Any) -> str:
    """Map an MSFT_Disk BusType code to its name; unknown codes map to ''."""
    try:
        return BUS_TYPES.get(int(str(code).strip()), "")
    except (TypeError, ValueError):
        return ""

def parse_serial_from_pnp(pnp_device_id: Optional[str]) -> str:
    """
    Serial proxy from the tail of a PnP device id.
    USBSTOR\\DISK&VEN_X&PROD_Y\\<serial>&0 -> <serial>; other buses keep the whole tail.
    """
    if not pnp_device_id:
        return ""
    tail = pnp_device_id.split("\\")[-1].strip()
    if not tail:
        return ""
    if pnp_device_id.upper().startswith(USB_STORAGE_MARKER):
        cut = tail.find("&")
        if cut > 0:
            return tail[:cut].strip()
    return tail

def vendor_from_pnp(pnp_device_id: Optional[str]) -> str:
    if not pnp_device_id:
        return ""
    match = _VENDOR_RE.search(pnp_device_id)
    if not match:
        return ""
    return match.group(1).strip()

def coalesce(*values: Optional[str]) -> str:
    for value in values:
        if value is None:
            continue
        text = str(value).strip()
        if text:
            return text
    return ""

def _to_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        # Array properties (HardwareID) - the first entry is the most specific
        value = value[0] if value else None
        if value is None:
            return None
    text = str(value).strip()
    return text or None

class AttributeSource(ABC):
    """One provider of raw device attributes."""

    name = "source"

    @abstractmethod
    def _read(self, attribute: str) -> Any:
        ...

    def try_get_field(self, attribute: str) -> Optional[str]:
        try:
            value = self._read(attribute)
        except ProviderUnavailable:
            raise
        except Exception as e:
            logger.debug(f"Source {self.name} could not read {attribute}: {e}")
            return None
        return _to_text(value)

    def try_get_number(self, attribute: str) -> Optional[int]:
        text = self.try_get_field(attribute)
        if text is None:
            return None
        try:
            return int(text)
        except ValueError:
            logger.debug(f"Source {self.name} returned non-numeric {attribute}: {text!r}")
            return None

class ObjectSource(AttributeSource):
    """Attributes of a live provider object."""

    def __init__(self, provider, obj, name: str = "object"):
        self.provider = provider
        self.obj = obj
        self.name = name

    def _read(self, attribute: str) -> Any:
        return self.provider.get_property(self.obj, attribute)

class MappingSource(AttributeSource):
    """Attributes captured in a plain dict, e.g. the event's target-instance snapshot."""

    def __init__(self, values: Mapping[str, Any], name: str = "snapshot"):
        self.values = values or {}
        self.name = name

    def _read(self, attribute: str) -> Any:
        return self.values.get(attribute)

class LayeredSource(AttributeSource):
    """Reads each attribute from the first layer that has it."""

    def __init__(self, layers: Iterable[AttributeSource], name: str = "layered"):
        self.layers: List[AttributeSource] = [layer for layer in layers if layer is not None]
        self.name = name

    def _read(self, attribute: str) -> Any:
        for layer in self.layers:
            value = layer.try_get_field(attribute)
            if value:
                return value
        return None

class LookupSource(AttributeSource):
    """First row of a WQL query, executed lazily and at most once."""

    def __init__(self, provider, wql: str, namespace: Optional[str] = None, name: str = "lookup"):
        self.provider = provider
        self.wql = wql
        self.namespace = namespace
        self.name = name
        self._loaded = False
        self._row = None

    def row(self):
        if not self._loaded:
            self._loaded = True
            try:
                rows = self.provider.query(self.wql, self.namespace)
                self._row = rows[0] if rows else None
            except ProviderUnavailable:
                raise
            except Exception as e:
                logger.debug(f"Lookup {self.name} failed: {e}")
                self._row = None
        return self._row

    def _read(self, attribute: str) -> Any:
        row = self.row()
        if row is None:
            return None
        return self.provider.get_property(row, attribute)

class CachedSource(AttributeSource):
    """
    Memoizes one attribute of an inner source in a shared LookupCache.
    With refresh=True the inner source is always read and the cache overwritten.
    """

    def __init__(self, inner: AttributeSource, cache: LookupCache, key: str, attribute: str,
                 refresh: bool = False):
        self.inner = inner
        self.cache = cache
        self.key = key
        self.attribute = attribute
        self.refresh = refresh
        self.name = f"cached:{inner.name}"

    def _read(self, attribute: str) -> Any:
        if attribute != self.attribute:
            return self.inner.try_get_field(attribute)
        compute = lambda: self.inner.try_get_field(attribute) or ""
        if self.refresh:
            return self.cache.refresh(self.key, compute)
        return self.cache.get_or_compute(self.key, compute)

class DevicePathSource(AttributeSource):
    """Facts parsed out of the PnP device id. Last resort: observed, not reported."""

    name = "devicePath"

    def __init__(self, pnp_device_id: Optional[str]):
        self.pnp_device_id = pnp_device_id or ""

    def _read(self, attribute: str) -> Any:
        if attribute == "serial":
            return parse_serial_from_pnp(self.pnp_device_id)
        if attribute == "vendor":
            return vendor_from_pnp(self.pnp_device_id)
        return None

class Link(NamedTuple):
    source: str
    attribute: str
    transform: Optional[Callable[[str], str]] = None

STRING_CHAINS: Dict[str, Tuple[Link, ...]] = {
    "name": (
        Link(LEGACY, "DeviceID"),
    ),
    "pnpDeviceID": (
        Link(LEGACY, "PNPDeviceID"),
        Link(PNP_LOOKUP, "PNPDeviceID"),
    ),
    "serialNumber": (
        Link(STRUCTURED, "SerialNumber"),
        Link(LEGACY, "SerialNumber"),
        Link(MEDIA, "SerialNumber"),
        Link(DEVICE_PATH, "serial"),
    ),
    "model": (
        Link(STRUCTURED, "Model"),
        Link(LEGACY, "Model"),
        Link(LEGACY, "Caption"),
    ),
    "firmwareVersion": (
        Link(STRUCTURED, "FirmwareVersion"),
        Link(LEGACY, "FirmwareRevision"),
    ),
    "manufacturer": (
        Link(LEGACY, "Manufacturer"),
        Link(DEVICE_PATH, "vendor"),
        Link(STRUCTURED, "FriendlyName"),
    ),
    "friendlyName": (
        Link(STRUCTURED, "FriendlyName"),
        Link(LEGACY, "FriendlyName"),
        Link(STRUCTURED, "Model"),
        Link(LEGACY, "Model"),
        Link(LEGACY, "Caption"),
    ),
    "caption": (
        Link(LEGACY, "Caption"),
        Link(STRUCTURED, "Model"),
        Link(LEGACY, "Model"),
    ),
    "hardwareID": (
        Link(PNP_ENTITY, "HardwareID"),
    ),
    "interfaceType": (
        Link(STRUCTURED, "BusType", bus_type_to_string),
        Link(LEGACY, "InterfaceType"),
    ),
}

# field -> (chain, whether zero counts as a value)
NUMBER_CHAINS: Dict[str, Tuple[Tuple[Link, ...], bool]] = {
    "diskNumber": ((Link(LEGACY, "Index"), Link(STRUCTURED, "Number")), True),
    "sizeInBytes": ((Link(STRUCTURED, "Size"), Link(LEGACY, "Size")), False),
}

def resolve_field(field: str, sources: Mapping[str, AttributeSource],
                  chains: Mapping[str, Tuple[Link, ...]] = STRING_CHAINS) -> str:
    """First non-empty value along the field's chain, or ''."""
    for link in chains[field]:
        source = sources.get(link.source)
        if source is None:
            continue
        value = source.try_get_field(link.attribute)
        if value and link.transform is not None:
            value = link.transform(value)
        value = coalesce(value)
        if value:
            return value
    return ""

def resolve_number(field: str, sources: Mapping[str, AttributeSource],
                   chains: Mapping[str, Tuple[Tuple[Link, ...], bool]] = NUMBER_CHAINS) -> int:
    links, allow_zero = chains[field]
    for link in links:
        source = sources.get(link.source)
        if source is None:
            continue
        value = source.try_get_number(link.attribute)
        if value is None or (value == 0 and not allow_zero):
            continue
        return value
    return 0

class FieldResolver:
    """Resolves every record field from one set of role-keyed sources."""

    def __init__(self, sources: Optional[Dict[str, AttributeSource]] = None):
        self.sources: Dict[str, AttributeSource] = dict(sources or {})

    def add_source(self, role: str, source: Optional[AttributeSource]):
        if source is not None:
            self.sources[role] = source

    def resolve(self, field: str) -> str:
        return resolve_field(field, self.sources)

    def resolve_number(self, field: str) -> int:
        return resolve_number(field, self.sources)

    def resolve_all(self) -> Dict[str, Any]:
        resolved: Dict[str, Any] = {name: self.resolve(name) for name in STRING_CHAINS}
        resolved.update({name: self.resolve_number(name) for name in NUMBER_CHAINS})
        return resolved
