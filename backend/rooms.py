from typing import Dict, List, Optional
import asyncio
import logging
import time

from broadcast import Broadcaster
from devices import Device, DeviceRegistry, sanitize_display_name, sanitize_locale
from errors import DeviceNotFound, RoomAlreadyExists, RoomNotFound
from game_session import GameSession
from game_settings import GameSettings, max_category_selections
from transport import Transport
from voting import sanitize_selections

logger = logging.getLogger(__name__)


class Room:
    def __init__(self, room_id: str, admin_id: str):
        self.room_id = room_id
        self.admin_id = admin_id
        self.members: Dict[str, float] = {}  # device_id -> joined_at, insertion order is join order
        self.votes: Dict[str, List[str]] = {}  # device_id -> sanitized categories
        self.is_voting_closed = False
        self.is_game_started = False
        self.game_settings: Optional[GameSettings] = None
        self.game_session: Optional[GameSession] = None
        self.timer_task: Optional[asyncio.Task] = None

    def is_admin(self, device_id: Optional[str]) -> bool:
        return device_id is not None and device_id == self.admin_id

    def guest_ids(self) -> List[str]:
        return [device_id for device_id in self.members if device_id != self.admin_id]

    def cancel_countdown(self):
        if self.timer_task:
            self.timer_task.cancel()
            self.timer_task = None


class RoomManager:
    """Room membership, admin authority, category votes and ready state."""

    def __init__(self, registry: DeviceRegistry, transport: Transport, broadcaster: Broadcaster):
        self.registry = registry
        self.transport = transport
        self.broadcaster = broadcaster
        self.rooms: Dict[str, Room] = {}

    def __len__(self):
        return len(self.rooms)

    def get(self, room_id: Optional[str]) -> Optional[Room]:
        if not isinstance(room_id, str):
            return None
        return self.rooms.get(room_id)

    def member_room(self, room_id, device_id: str) -> Optional[Room]:
        """The room, if it exists and the device is currently one of its members."""
        room = self.get(room_id)
        device = self.registry.get(device_id)
        if room is None or device is None or device.room_id != room.room_id or device_id not in room.members:
            return None
        return room

    def require_admin(self, room_id, requester_id: str, action: str) -> Optional[Room]:
        room = self.member_room(room_id, requester_id)
        if room is None:
            logger.warning("Invalid %s attempt by %s for room %s", action, requester_id, room_id)
            return None
        if not room.is_admin(requester_id):
            logger.warning("Device %s tried to %s without admin role", requester_id, action)
            return None
        return room

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    def create(self, room_id, device_id: str, display_name=None,
               connection_handle: Optional[str] = None) -> Optional[Room]:
        if not isinstance(room_id, str) or not room_id.strip():
            logger.warning("Device %s tried to create a room without a valid id", device_id)
            return None
        device = self.registry.get(device_id)
        if device is None:
            logger.warning("Unknown device tried to create channel: %s", device_id)
            raise DeviceNotFound(device_id)
        if room_id in self.rooms:
            logger.warning("Channel %s already exists", room_id)
            raise RoomAlreadyExists(room_id)

        self._prepare_device(device, display_name, connection_handle)

        room = Room(room_id, device.id)
        self.rooms[room_id] = room
        self._add_member(room, device)
        logger.info("Channel %s created with admin %s", room_id, device.id)

        self.broadcaster.send_view(room, device, "joined-channel")
        return room

    def join(self, room_id, device_id: str, display_name=None,
             connection_handle: Optional[str] = None) -> Room:
        device = self.registry.get(device_id)
        if device is None:
            logger.warning("Unknown device tried to join: %s", device_id)
            raise DeviceNotFound(device_id)
        room = self.get(room_id)
        if room is None:
            logger.warning("Channel %s does not exist", room_id)
            raise RoomNotFound(str(room_id))

        self._prepare_device(device, display_name, connection_handle, keep_room=room.room_id)
        self._add_member(room, device)
        logger.info("Channel %s now has %d devices: %s", room.room_id, len(room.members),
                    ", ".join(f"{d} ({'admin' if room.is_admin(d) else 'guest'})" for d in room.members))

        self.broadcaster.sync_room(room)
        self.broadcaster.send_view(room, device, "joined-channel")
        return room

    def leave(self, device_id: str, room_id=None):
        device = self.registry.get(device_id)
        active_room_id = (device.room_id if device else None) or room_id
        if device is None or not active_room_id:
            logger.warning("Device %s tried to leave but no active channel", device_id)
            return
        logger.info("Device %s leaving channel: %s", device_id, active_room_id)
        room = self.get(active_room_id)
        if room is not None and room.is_admin(device_id):
            self.force_close(room.room_id, "admin_left")
        else:
            self._detach(device_id)

    def remove_member(self, room_id, requester_id: str, target_id, reason: str = "removed_by_admin"):
        room = self.require_admin(room_id, requester_id, "remove a device")
        if room is None:
            return
        if room.is_admin(target_id) or target_id not in room.members:
            logger.warning("Ignored removal of %s from channel %s", target_id, room.room_id)
            return
        logger.info("Admin %s removing device %s from channel %s", requester_id, target_id, room.room_id)
        self._detach(target_id, reason)

    def force_close(self, room_id: str, reason: str, notify_admin: bool = False):
        room = self.rooms.get(room_id)
        if room is None:
            return
        logger.info("Force closing channel %s (reason: %s)", room_id, reason)
        room.cancel_countdown()
        for device_id in list(room.members):
            notify = notify_admin if room.is_admin(device_id) else True
            self._detach(device_id, reason if notify else None, suppress_update=True)
        if self.rooms.get(room_id) is room:
            self._delete(room)

    def _prepare_device(self, device: Device, display_name, connection_handle: Optional[str],
                        keep_room: Optional[str] = None):
        if device.room_id and device.room_id != keep_room:
            self.leave(device.id)
        name = sanitize_display_name(display_name)
        if name:
            device.display_name = name
        if connection_handle:
            self.registry.bind(device, connection_handle)

    def _add_member(self, room: Room, device: Device):
        room.members.setdefault(device.id, time.time())
        device.room_id = room.room_id
        device.role = "admin" if room.is_admin(device.id) else "guest"
        device.is_ready = False
        self.transport.join_group(device.connection_handle, room.room_id)

    def _detach(self, device_id: str, reason: Optional[str] = None, suppress_update: bool = False):
        device = self.registry.get(device_id)
        if device is None or not device.room_id:
            return
        room_id = device.room_id
        room = self.rooms.get(room_id)
        device.clear_membership()
        self.transport.leave_group(device.connection_handle, room_id)
        if room is None:
            return

        room.members.pop(device_id, None)
        room.votes.pop(device_id, None)
        if reason:
            self.transport.send(device.connection_handle, "force-leave-channel",
                                {"roomId": room_id, "reason": reason})

        if not room.members:
            self._delete(room)
        elif not suppress_update:
            self.broadcaster.sync_room(room)

    def _delete(self, room: Room):
        room.cancel_countdown()
        self.rooms.pop(room.room_id, None)
        self.transport.discard_group(room.room_id)
        logger.info("Channel %s deleted", room.room_id)

    # ------------------------------------------------------------------
    # Lobby state
    # ------------------------------------------------------------------

    def submit_vote(self, room_id, device_id: str, categories):
        if not isinstance(categories, list):
            return
        room = self.member_room(room_id, device_id)
        if room is None:
            logger.warning("Device %s attempted category vote without channel", device_id)
            return
        if room.is_voting_closed:
            logger.warning("Vote ignored because channel %s voting closed", room.room_id)
            return
        room.votes[device_id] = sanitize_selections(categories, max_category_selections(room.game_settings))
        self.broadcaster.sync_room(room)

    def close_voting(self, room_id, requester_id: str):
        room = self.require_admin(room_id, requester_id, "close voting")
        if room is None or room.is_voting_closed:
            return
        room.is_voting_closed = True
        logger.info("Channel %s voting closed by admin %s", room.room_id, requester_id)
        self.broadcaster.sync_room(room)

    def set_ready(self, room_id, device_id: str, is_ready):
        room = self.member_room(room_id, device_id)
        if room is None or room.is_game_started:
            return
        self.registry.get(device_id).is_ready = bool(is_ready)
        self.broadcaster.sync_room(room)

    def set_device_status(self, device_id: str, is_active):
        device = self.registry.get(device_id)
        if device is None:
            return
        device.is_active = bool(is_active)
        room = self.get(device.room_id)
        if room is not None:
            self.broadcaster.sync_room(room)

    def update_locale(self, device_id: str, locale):
        device = self.registry.get(device_id)
        locale = sanitize_locale(locale)
        if device is None or locale is None:
            return
        device.locale = locale
        room = self.get(device.room_id)
        if room is not None:
            self.broadcaster.sync_room(room)

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    def handle_reconnect(self, device: Device):
        """Put a returning device back into its room's broadcast group."""
        if not device.room_id:
            return
        room = self.get(device.room_id)
        if room is None or device.id not in room.members:
            device.clear_membership()
            return
        self.transport.join_group(device.connection_handle, room.room_id)
        self.broadcaster.sync_room(room)

    def handle_disconnect(self, device: Device):
        room = self.get(device.room_id)
        if room is None:
            return
        if room.is_admin(device.id):
            self.force_close(room.room_id, "admin_disconnected")
        else:
            self.broadcaster.sync_room(room)

    def handle_device_expired(self, device: Device):
        room = self.get(device.room_id)
        if room is None:
            return
        if room.is_admin(device.id):
            self.force_close(room.room_id, "admin_inactive_timeout")
        else:
            self._detach(device.id)
