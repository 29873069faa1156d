from typing import Any, Dict, List, Optional
from . import wql
from .cache import LookupCache
from .config import config
from .correlator import CorrelatedEvent, EventCorrelator, EventSession
from .errors import PreconditionViolation
from .events import DeviceObservation, EventType, ResolvedDiskRecord, VolumeRecord
from .logger import logger
from .provider import DiskProvider
from .resolver import (
    DEVICE_PATH, LEGACY, MEDIA, PNP_ENTITY, PNP_LOOKUP, STRUCTURED,
    AttributeSource, CachedSource, DevicePathSource, FieldResolver, LayeredSource,
    LookupSource, MappingSource, ObjectSource,
)
from .volumes import VolumeMapper, poll_for_mount

class DiskEventEngine:
    """
    Waits for one disk attach/detach and resolves it into a ResolvedDiskRecord.

    Waiting -> Resolving -> record; Waiting -> timeout -> None;
    provider failure in either state raises ProviderUnavailable.
    Arguments left as None are read from the `engine` config section.
    """

    def __init__(self, provider: DiskProvider,
                 within_s: Optional[int] = None,
                 listener_slice_ms: Optional[int] = None,
                 storage_namespace: Optional[str] = None,
                 cache: Optional[LookupCache] = None):
        defaults = config["engine"]
        self.provider = provider
        self.correlator = EventCorrelator(
            provider,
            within_s=defaults["event_within_s"] if within_s is None else within_s,
            slice_ms=defaults["listener_slice_ms"] if listener_slice_ms is None else listener_slice_ms,
        )
        self.mapper = VolumeMapper(provider)
        self.storage_namespace = storage_namespace or config["wmi"]["storage_namespace"]
        self.cache = cache if cache is not None else LookupCache()

    def open_session(self) -> EventSession:
        """Subscriptions that stay open across next_event(session=...) calls."""
        return self.correlator.session()

    def next_event(self,
                   timeout_ms: Optional[int] = None,
                   poll_ceiling_s: Optional[float] = None,
                   poll_interval_ms: Optional[int] = None,
                   first_only: Optional[bool] = None,
                   session: Optional[EventSession] = None) -> Optional[ResolvedDiskRecord]:
        """
        Block until a disk is attached or detached, or timeout_ms elapses.
        timeout_ms=None waits forever. Returns None on timeout.
        With an open session the wait reuses its subscriptions instead of opening new ones.
        """
        defaults = config["engine"]
        if poll_ceiling_s is None:
            poll_ceiling_s = defaults["poll_ceiling_s"]
        if poll_interval_ms is None:
            poll_interval_ms = defaults["poll_interval_ms"]
        if first_only is None:
            first_only = defaults["first_volume_only"]
        _validate(timeout_ms, poll_ceiling_s, poll_interval_ms)

        with self.provider.thread_context():
            waiter = session if session is not None else self.correlator
            event = waiter.wait_for_event(timeout_ms)
            if event is None:
                logger.debug(f"No disk event within {timeout_ms} ms")
                return None
            record = self.resolve(event, poll_ceiling_s, poll_interval_ms / 1000.0, first_only)

        logger.info(
            f"Disk {record.event_type.value}: #{record.disk_number} {record.model or record.name} "
            f"serial={record.serial_number or '-'} mount={record.mount_point or '-'}",
            extra={
                "event_type": record.event_type,
                "disk_number": record.disk_number,
                "mount_point": record.mount_point,
                "device_info": record.to_dict(),
            },
        )
        return record

    def resolve(self, event: CorrelatedEvent, poll_ceiling_s: float = 4.0,
                poll_interval_s: float = 0.25, first_only: bool = False) -> ResolvedDiskRecord:
        ref = event.ref
        # Raises ProviderUnavailable if the service is gone; None if the instance vanished
        handle = self.provider.rebind(ref)
        if handle is None:
            logger.debug(f"{ref.device_id or ref.path} no longer bound; using event snapshot")

        observation = self.observe(ref, handle, event.event_type)
        fields = self.resolve_fields(observation)

        disk_path = self.provider.path_of(handle) if handle is not None else ref.path
        volumes = self.map_volumes(event.event_type, disk_path, poll_ceiling_s, poll_interval_s, first_only)

        return ResolvedDiskRecord(
            event_type=event.event_type,
            disk_number=fields["diskNumber"],
            name=fields["name"],
            serial_number=fields["serialNumber"],
            model=fields["model"],
            firmware_version=fields["firmwareVersion"],
            manufacturer=fields["manufacturer"],
            pnp_device_id=fields["pnpDeviceID"],
            friendly_name=fields["friendlyName"],
            caption=fields["caption"],
            hardware_id=fields["hardwareID"],
            interface_type=fields["interfaceType"],
            size_in_bytes=fields["sizeInBytes"],
            volumes=volumes,
        )

    def observe(self, ref, handle: Any, event_type: EventType = EventType.ATTACHED) -> DeviceObservation:
        """Collect the raw sources for one disk: live handle, event snapshot, MSFT_Disk."""
        live = ObjectSource(self.provider, handle, name="Win32_DiskDrive") if handle is not None else None
        legacy = LayeredSource([live, MappingSource(ref.properties, name="event snapshot")], name="Win32_DiskDrive")

        device_id = legacy.try_get_field("DeviceID") or ref.device_id
        disk_index = legacy.try_get_number("Index")

        structured = None
        if disk_index is not None:
            structured = LookupSource(self.provider, wql.structured_disk_by_number(disk_index),
                                      namespace=self.storage_namespace, name="MSFT_Disk")
            if structured.row() is None:
                structured = None

        attached = event_type is EventType.ATTACHED
        sources: Dict[str, AttributeSource] = {LEGACY: legacy}
        if structured is not None:
            sources[STRUCTURED] = structured
        if device_id:
            sources[MEDIA] = LookupSource(self.provider, wql.physical_media_by_tag(device_id),
                                          name="Win32_PhysicalMedia")
            # A new disk may reuse a departed disk's number: attach never trusts the cache
            sources[PNP_LOOKUP] = CachedSource(
                LookupSource(self.provider, wql.pnp_by_device_id(device_id), name="Win32_DiskDrive by DeviceID"),
                self.cache, device_id, "PNPDeviceID", refresh=attached,
            )

        resolver = FieldResolver(sources)
        pnp_device_id = resolver.resolve("pnpDeviceID")

        if device_id:
            if attached:
                self.cache.refresh(device_id, lambda: pnp_device_id)
            else:
                self.cache.pop(device_id)

        return DeviceObservation(
            device_path=pnp_device_id,
            device_id=device_id or "",
            disk_index=disk_index,
            sources=sources,
        )

    def resolve_fields(self, observation: DeviceObservation) -> Dict[str, Any]:
        resolver = FieldResolver(observation.sources)
        resolver.add_source(DEVICE_PATH, DevicePathSource(observation.device_path))
        if observation.device_path:
            resolver.add_source(PNP_ENTITY, LookupSource(
                self.provider, wql.pnp_entity_by_id(observation.device_path), name="Win32_PnPEntity"))
        return resolver.resolve_all()

    def map_volumes(self, event_type: EventType, disk_path: str, poll_ceiling_s: float,
                    poll_interval_s: float, first_only: bool = False) -> List[VolumeRecord]:
        if event_type is EventType.ATTACHED:
            return poll_for_mount(self.mapper, disk_path, poll_ceiling_s, poll_interval_s, first_only=first_only)
        # On detach the letter is usually gone already; one look is enough
        return self.mapper.map_volumes(disk_path, first_only=first_only)

def _validate(timeout_ms: Optional[int], poll_ceiling_s: float, poll_interval_ms: int):
    if timeout_ms is not None and timeout_ms < 0:
        raise PreconditionViolation(f"timeout_ms must be non-negative or None, got {timeout_ms}")
    if poll_ceiling_s < 0:
        raise PreconditionViolation(f"poll_ceiling_s must be non-negative, got {poll_ceiling_s}")
    if poll_interval_ms < 0:
        raise PreconditionViolation(f"poll_interval_ms must be non-negative, got {poll_interval_ms}")
