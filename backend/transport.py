from fastapi import WebSocket
from typing import Dict, List, Optional, Set
import asyncio
import logging
import uuid

logger = logging.getLogger(__name__)


def make_frame(event: str, payload: Optional[dict] = None) -> dict:
    frame = {"type": event}
    if payload:
        frame.update(payload)
    return frame


class Connection:
    """One live WebSocket. Outbound frames are queued and written by pump()."""

    def __init__(self, websocket: WebSocket, handle: Optional[str] = None):
        self.handle = handle or uuid.uuid4().hex
        self.websocket = websocket
        self.outbox: asyncio.Queue = asyncio.Queue()
        self.closed = False
        # WS rate limiting: timestamps of recent inbound messages
        self.msg_timestamps: List[float] = []

    def send(self, message: dict):
        if self.closed:
            return
        self.outbox.put_nowait(message)

    async def pump(self):
        """Write queued frames to the socket in order until cancelled or the socket dies."""
        try:
            while True:
                message = await self.outbox.get()
                await self.websocket.send_json(message)
        except asyncio.CancelledError:
            pass
        except Exception:
            self.closed = True
            logger.info("Stopped writing to connection %s (socket gone)", self.handle)


class Transport:
    def __init__(self):
        self.connections: Dict[str, Connection] = {}
        self.groups: Dict[str, Set[str]] = {}

    def open(self, websocket: WebSocket, handle: Optional[str] = None) -> Connection:
        connection = Connection(websocket, handle)
        self.connections[connection.handle] = connection
        return connection

    def close(self, handle: str):
        connection = self.connections.pop(handle, None)
        if connection:
            connection.closed = True
        for group in list(self.groups):
            self.leave_group(handle, group)

    def get(self, handle: Optional[str]) -> Optional[Connection]:
        if not handle:
            return None
        return self.connections.get(handle)

    def send(self, handle: Optional[str], event: str, payload: Optional[dict] = None):
        connection = self.get(handle)
        if connection is None:
            logger.debug("Dropping %s for unknown connection %s", event, handle)
            return
        connection.send(make_frame(event, payload))

    def broadcast(self, group: str, event: str, payload: Optional[dict] = None):
        frame = make_frame(event, payload)
        for handle in list(self.groups.get(group, ())):
            connection = self.connections.get(handle)
            if connection:
                connection.send(dict(frame))

    def join_group(self, handle: Optional[str], group: str):
        if handle is None:
            return
        self.groups.setdefault(group, set()).add(handle)

    def leave_group(self, handle: Optional[str], group: str):
        members = self.groups.get(group)
        if not members:
            return
        members.discard(handle)
        if not members:
            del self.groups[group]

    def discard_group(self, group: str):
        self.groups.pop(group, None)
