"""Public room views and their delivery to room members."""
from typing import TYPE_CHECKING, Optional
import logging

import config
from devices import Device, DeviceRegistry
from game_settings import max_category_selections, timer_status
from transport import Transport
from voting import tally_votes

if TYPE_CHECKING:
    from rooms import Room

logger = logging.getLogger(__name__)


def build_session_view(room: "Room", locale: Optional[str] = None) -> Optional[dict]:
    session = room.game_session
    if session is None:
        return None
    questions = session.questions_for(locale)
    return {
        "locale": locale if session.is_multilingual and locale in session.questions_by_locale
        else session.canonical_locale,
        "isMultilingual": session.is_multilingual,
        "questions": [q.to_payload(session.is_revealed(i)) for i, q in enumerate(questions)],
        "currentQuestionIndex": session.current_question_index,
        "totalQuestions": session.total_questions,
        "questionStartTime": int(session.question_start_time * 1000),
        "timerRemainingSeconds": session.timer_remaining_seconds,
        "timerStatus": timer_status(room.game_settings, session.timer_remaining_seconds),
        "isShowingResults": session.is_showing_results,
        "answeredDeviceIds": session.answered_device_ids(session.current_question_index),
        "ranking": session.ranking if session.is_showing_results else [],
        # Per-device answer history, only once the round is over
        "answers": {
            device_id: [record.to_payload() for record in records]
            for device_id, records in session.answers.items()
        } if session.is_showing_results else {},
    }


def build_room_view(room: "Room", registry: DeviceRegistry, locale: Optional[str] = None) -> dict:
    devices = [registry.get(device_id) for device_id in room.members]
    devices = [device.to_payload() for device in devices if device is not None]
    member_votes = {d: v for d, v in room.votes.items() if d in room.members}
    return {
        "roomId": room.room_id,
        "devices": devices,
        "totalDevices": len(devices),
        "adminId": room.admin_id,
        "categoryTotals": tally_votes(member_votes)[:config.CATEGORY_TALLY_LIMIT],
        "maxCategorySelections": max_category_selections(room.game_settings),
        "isVotingClosed": room.is_voting_closed,
        "isGameStarted": room.is_game_started,
        "gameSettings": room.game_settings.to_payload() if room.game_settings else None,
        "game": build_session_view(room, locale),
    }


class Broadcaster:
    def __init__(self, transport: Transport, registry: DeviceRegistry):
        self.transport = transport
        self.registry = registry

    def view_for(self, room: "Room", device: Optional[Device] = None) -> dict:
        locale = device.locale if device is not None else None
        return build_room_view(room, self.registry, locale)

    def sync_room(self, room: "Room", event: str = "channel-update"):
        """Push the current view to every member; per-locale when questions are multilingual."""
        session = room.game_session
        if session is not None and session.is_multilingual:
            for device_id in room.members:
                device = self.registry.get(device_id)
                if device is not None:
                    self.transport.send(device.connection_handle, event, self.view_for(room, device))
            return
        self.transport.broadcast(room.room_id, event, self.view_for(room))

    def send_view(self, room: "Room", device: Device, event: str):
        self.transport.send(device.connection_handle, event, self.view_for(room, device))

    def emit(self, room: "Room", event: str, payload: Optional[dict] = None):
        self.transport.broadcast(room.room_id, event, payload)
