from fastapi import WebSocket, WebSocketDisconnect
from typing import Callable, Dict, List, Optional
import json
import time
import asyncio
import logging

import config
from broadcast import Broadcaster
from devices import Device, DeviceRegistry
from errors import ChannelError
from game_engine import GameEngine
from rooms import RoomManager
from transport import Connection, Transport

logger = logging.getLogger(__name__)


def _options(message: dict) -> dict:
    options = message.get("options")
    return options if isinstance(options, dict) else {}


class SocketManager:
    """Owns all in-memory state and routes inbound events to the room and game handlers."""

    def __init__(self, grace_period: float = config.DEVICE_GRACE_PERIOD_SECONDS,
                 tick_interval: float = config.COUNTDOWN_TICK_SECONDS):
        self.transport = Transport()
        self.registry = DeviceRegistry(grace_period)
        self.broadcaster = Broadcaster(self.transport, self.registry)
        self.rooms = RoomManager(self.registry, self.transport, self.broadcaster)
        self.engine = GameEngine(self.rooms, self.broadcaster, tick_interval)
        self.registry.on_expired = self.rooms.handle_device_expired
        self.allowed_origins: List[str] = []
        self.handle_to_device: Dict[str, str] = {}
        self._stats_task: Optional[asyncio.Task] = None
        self._handlers: Dict[str, Callable[[Connection, str, dict], None]] = {
            "create-channel": self._on_create_channel,
            "join-channel": self._on_join_channel,
            "leave-channel": self._on_leave_channel,
            "device-status": self._on_device_status,
            "update-category-vote": self._on_category_vote,
            "update-ready-state": self._on_ready_state,
            "close-category-vote": self._on_close_vote,
            "start-game": self._on_start_game,
            "update-game-settings": self._on_game_settings,
            "load-questions": self._on_load_questions,
            "submit-answer": self._on_submit_answer,
            "next-question": self._on_next_question,
            "reset-game": self._on_reset_game,
            "remove-device": self._on_remove_device,
            "update-locale": self._on_update_locale,
            "ping": self._on_ping,
        }

    # ------------------------------------------------------------------
    # Background tasks
    # ------------------------------------------------------------------

    def start_stats_loop(self):
        """Start the background stats logging task."""
        if self._stats_task is None:
            self._stats_task = asyncio.create_task(self._log_stats())

    async def _log_stats(self):
        while True:
            try:
                await asyncio.sleep(config.STATS_LOG_INTERVAL_SECONDS)
                logger.info("Active channels: %d, Connected devices: %d", len(self.rooms), len(self.registry))
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("Error in stats loop")

    async def shutdown(self):
        if self._stats_task:
            self._stats_task.cancel()
            self._stats_task = None
        for room in self.rooms.rooms.values():
            room.cancel_countdown()
        self.registry.shutdown()

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def connect(self, websocket: WebSocket, device_id: Optional[str] = None,
                      locale: Optional[str] = None):
        # Validate WebSocket origin
        origin = websocket.headers.get("origin", "")
        if self.allowed_origins and origin and origin not in self.allowed_origins:
            logger.warning("Rejected WebSocket from unauthorized origin: %s", origin)
            await websocket.close(code=1008)
            return

        await websocket.accept()
        connection = self.transport.open(websocket)
        device = self.on_connect(connection, device_id, locale)
        writer = asyncio.create_task(connection.pump())

        try:
            while True:
                data = await websocket.receive_text()

                # Enforce message size limit
                if len(data) > config.MAX_WS_MESSAGE_SIZE:
                    connection.send({"type": "error", "message": "Message too large"})
                    continue

                # Per-connection rate limiting
                now = time.time()
                timestamps = connection.msg_timestamps
                timestamps[:] = [t for t in timestamps if now - t < 1.0]
                if len(timestamps) >= config.WS_RATE_LIMIT_PER_SEC:
                    connection.send({"type": "error", "message": "Too many messages"})
                    continue
                timestamps.append(now)

                try:
                    message = json.loads(data)
                except json.JSONDecodeError:
                    logger.warning("Malformed JSON from device %s: %s", device.id, data[:100])
                    connection.send({"type": "error", "message": "Invalid message format"})
                    continue

                self.handle_message(connection, message)
        except WebSocketDisconnect:
            logger.info("Socket disconnected: %s (Device: %s)", connection.handle, device.id)
        except Exception:
            logger.exception("WebSocket error for device %s", device.id)
        finally:
            self.on_disconnect(connection)
            writer.cancel()

    def on_connect(self, connection: Connection, device_id: Optional[str] = None,
                   locale: Optional[str] = None) -> Device:
        persistent_id = device_id.strip() if isinstance(device_id, str) and device_id.strip() else connection.handle
        previous = self.registry.get(persistent_id)
        old_handle = previous.connection_handle if previous else None

        device = self.registry.register_or_refresh(persistent_id, connection.handle, locale)
        self.handle_to_device[connection.handle] = persistent_id
        logger.info("Device connected: %s (socket: %s)", persistent_id, connection.handle)

        if old_handle and old_handle != connection.handle and device.room_id:
            # The superseded connection stops receiving room traffic
            self.transport.leave_group(old_handle, device.room_id)
        self.rooms.handle_reconnect(device)
        return device

    def on_disconnect(self, connection: Connection):
        self.handle_to_device.pop(connection.handle, None)
        self.transport.close(connection.handle)
        # A create/join naming another device id moves that device onto this connection too
        for bound in self.registry.bound_to(connection.handle):
            device = self.registry.mark_inactive(bound.id, connection.handle)
            if device is not None:
                self.rooms.handle_disconnect(device)

    # ------------------------------------------------------------------
    # Inbound events
    # ------------------------------------------------------------------

    def handle_message(self, connection: Connection, message):
        if not isinstance(message, dict):
            connection.send({"type": "error", "message": "Invalid message format"})
            return
        event = message.get("type")
        handler = self._handlers.get(event)
        if handler is None:
            logger.warning("Unknown event %r from connection %s", event, connection.handle)
            connection.send({"type": "error", "message": "Unknown event"})
            return

        device_id = self.handle_to_device.get(connection.handle)
        if device_id is None:
            return
        try:
            handler(connection, device_id, message)
        except ChannelError as exc:
            self.transport.send(connection.handle, "channel-error", {"error": exc.code})
        except Exception:
            logger.exception("Error handling %s from device %s", event, device_id)

    def _on_create_channel(self, connection: Connection, device_id: str, message: dict):
        target = message.get("deviceId") or device_id
        display_name = message.get("displayName", _options(message).get("displayName"))
        logger.info("Device %s creating channel: %s", target, message.get("roomId"))
        self.rooms.create(message.get("roomId"), target, display_name, connection.handle)

    def _on_join_channel(self, connection: Connection, device_id: str, message: dict):
        target = message.get("deviceId") or device_id
        display_name = message.get("displayName", _options(message).get("displayName"))
        logger.info("Device %s joining channel: %s", target, message.get("roomId"))
        self.rooms.join(message.get("roomId"), target, display_name, connection.handle)

    def _on_leave_channel(self, connection: Connection, device_id: str, message: dict):
        self.rooms.leave(device_id, message.get("roomId"))

    def _on_device_status(self, connection: Connection, device_id: str, message: dict):
        self.rooms.set_device_status(device_id, message.get("isActive"))

    def _on_category_vote(self, connection: Connection, device_id: str, message: dict):
        self.rooms.submit_vote(message.get("roomId"), device_id, message.get("categories"))

    def _on_ready_state(self, connection: Connection, device_id: str, message: dict):
        self.rooms.set_ready(message.get("roomId"), device_id, message.get("isReady"))

    def _on_close_vote(self, connection: Connection, device_id: str, message: dict):
        self.rooms.close_voting(message.get("roomId"), device_id)

    def _on_start_game(self, connection: Connection, device_id: str, message: dict):
        self.engine.start_game(message.get("roomId"), device_id, message.get("settings"))

    def _on_game_settings(self, connection: Connection, device_id: str, message: dict):
        self.engine.configure_settings(message.get("roomId"), device_id, message.get("settings"))

    def _on_load_questions(self, connection: Connection, device_id: str, message: dict):
        self.engine.load_questions(message.get("roomId"), device_id, message.get("questions"))

    def _on_submit_answer(self, connection: Connection, device_id: str, message: dict):
        self.engine.submit_answer(
            message.get("roomId"),
            device_id,
            message.get("questionIndex"),
            message.get("answerIndex"),
            message.get("timeSpent", 0),
        )

    def _on_next_question(self, connection: Connection, device_id: str, message: dict):
        self.engine.advance_question(message.get("roomId"), device_id)

    def _on_reset_game(self, connection: Connection, device_id: str, message: dict):
        self.engine.reset_game(message.get("roomId"), device_id)

    def _on_remove_device(self, connection: Connection, device_id: str, message: dict):
        target = message.get("targetDeviceId")
        if not target:
            return
        self.rooms.remove_member(message.get("roomId"), device_id, target)

    def _on_update_locale(self, connection: Connection, device_id: str, message: dict):
        self.rooms.update_locale(device_id, message.get("locale"))

    def _on_ping(self, connection: Connection, device_id: str, message: dict):
        self.transport.send(connection.handle, "pong", {"timestamp": int(time.time() * 1000)})
