from typing import Callable, Dict, List, Optional
import asyncio
import logging
import re
import time

import config

logger = logging.getLogger(__name__)

_CONTROL_CHARS = re.compile(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]')


def sanitize_display_name(value) -> Optional[str]:
    """Return a trimmed, length-capped name, or None if the value is unusable."""
    if not isinstance(value, str):
        return None
    value = _CONTROL_CHARS.sub('', value).strip()[:config.MAX_DISPLAY_NAME_LENGTH]
    return value or None


def sanitize_locale(value) -> Optional[str]:
    if not isinstance(value, str):
        return None
    value = value.strip()[:config.MAX_LOCALE_LENGTH]
    return value or None


class Device:
    """A participant identity. Survives reconnects; the connection handle does not."""

    def __init__(self, device_id: str, connection_handle: str, locale: Optional[str] = None):
        self.id = device_id
        self.connection_handle = connection_handle
        self.locale = locale or config.DEFAULT_LOCALE
        self.display_name: Optional[str] = None
        self.role = "guest"  # guest | admin
        self.is_ready = False
        self.is_active = True
        self.room_id: Optional[str] = None
        self.connected_at = time.time()

    def clear_membership(self):
        self.room_id = None
        self.role = "guest"
        self.is_ready = False

    def to_payload(self) -> dict:
        return {
            "id": self.id,
            "connectedAt": int(self.connected_at * 1000),
            "roomId": self.room_id,
            "isActive": self.is_active,
            "role": self.role,
            "displayName": self.display_name or self.id,
            "isReady": self.is_ready,
            "locale": self.locale,
        }


class DeviceRegistry:
    def __init__(self, grace_period: float = config.DEVICE_GRACE_PERIOD_SECONDS,
                 on_expired: Optional[Callable[[Device], None]] = None):
        self.devices: Dict[str, Device] = {}
        self.grace_period = grace_period
        # Called with the device right before it is dropped from the registry
        self.on_expired = on_expired
        self._removal_tasks: Dict[str, asyncio.Task] = {}

    def __len__(self):
        return len(self.devices)

    def get(self, device_id: Optional[str]) -> Optional[Device]:
        if not device_id:
            return None
        return self.devices.get(device_id)

    def register_or_refresh(self, device_id: str, connection_handle: str,
                            locale: Optional[str] = None) -> Device:
        self._cancel_removal(device_id)
        device = self.devices.get(device_id)
        if device is None:
            device = Device(device_id, connection_handle, sanitize_locale(locale))
            self.devices[device_id] = device
            logger.info("Device registered: %s (connection %s)", device_id, connection_handle)
            return device

        device.connection_handle = connection_handle
        device.is_active = True
        device.connected_at = time.time()
        locale = sanitize_locale(locale)
        if locale:
            device.locale = locale
        logger.info("Device %s reconnected (connection %s, room %s)",
                    device_id, connection_handle, device.room_id)
        return device

    def bind(self, device: Device, connection_handle: str):
        """Point an existing device at a different live connection."""
        if device.connection_handle != connection_handle:
            self._cancel_removal(device.id)
            device.connection_handle = connection_handle
            device.is_active = True

    def bound_to(self, connection_handle: str) -> List[Device]:
        """Every device currently driven by this connection, including ones it bound by id."""
        return [device for device in self.devices.values() if device.connection_handle == connection_handle]

    def mark_inactive(self, device_id: str, connection_handle: str) -> Optional[Device]:
        """Flag a device inactive and schedule its removal after the grace period.

        Returns the device, or None when the disconnecting connection is no
        longer the device's current one (it already reconnected elsewhere).
        """
        device = self.devices.get(device_id)
        if device is None or device.connection_handle != connection_handle:
            return None
        device.is_active = False
        self._cancel_removal(device_id)
        self._removal_tasks[device_id] = asyncio.create_task(
            self._expire_after(device_id, connection_handle)
        )
        return device

    async def _expire_after(self, device_id: str, connection_handle: str):
        """Drop the device unless it came back on a newer connection meanwhile."""
        try:
            await asyncio.sleep(self.grace_period)
        except asyncio.CancelledError:
            return
        self._removal_tasks.pop(device_id, None)
        device = self.devices.get(device_id)
        if device is None or device.is_active or device.connection_handle != connection_handle:
            return
        logger.info("Removing inactive device: %s", device_id)
        if self.on_expired:
            try:
                self.on_expired(device)
            except Exception:
                logger.exception("Error while expiring device %s", device_id)
        self.devices.pop(device_id, None)

    def _cancel_removal(self, device_id: str):
        task = self._removal_tasks.pop(device_id, None)
        if task:
            task.cancel()

    def shutdown(self):
        for task in self._removal_tasks.values():
            task.cancel()
        self._removal_tasks.clear()
