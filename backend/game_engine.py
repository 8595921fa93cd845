from typing import Optional
import asyncio
import logging
import time

import config
from broadcast import Broadcaster
from game_session import AnswerRecord, GameSession, compute_ranking
from game_settings import GameSettings, parse_settings, timer_duration
from rooms import Room, RoomManager

logger = logging.getLogger(__name__)


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class GameEngine:
    """Game start gate, question progression, countdown, scoring and ranking."""

    def __init__(self, rooms: RoomManager, broadcaster: Broadcaster,
                 tick_interval: float = config.COUNTDOWN_TICK_SECONDS):
        self.rooms = rooms
        self.registry = rooms.registry
        self.broadcaster = broadcaster
        self.tick_interval = tick_interval

    def configure_settings(self, room_id, requester_id: str, raw_settings) -> Optional[GameSettings]:
        room = self.rooms.require_admin(room_id, requester_id, "update game settings")
        if room is None:
            return None
        if room.is_game_started:
            logger.warning("Settings update ignored: channel %s already started", room.room_id)
            return None
        settings = parse_settings(raw_settings)
        if settings is None:
            return None
        room.game_settings = settings
        logger.info("Channel %s settings updated: %s", room.room_id, settings.to_payload())
        self.broadcaster.sync_room(room)
        return settings

    def start_game(self, room_id, requester_id: str, raw_settings=None) -> bool:
        room = self.rooms.require_admin(room_id, requester_id, "start game")
        if room is None:
            return False
        if room.is_game_started:
            logger.warning("Channel %s game already started", room.room_id)
            return False

        guests = [self.registry.get(device_id) for device_id in room.guest_ids()]
        guests = [guest for guest in guests if guest is not None]
        if not guests:
            logger.warning("Admin %s tried to start game without any guests", requester_id)
            return False
        if not all(guest.is_ready for guest in guests):
            logger.warning("Admin %s tried to start game but not all guests are ready", requester_id)
            return False

        if raw_settings is not None:
            settings = parse_settings(raw_settings)
            if settings is not None:
                room.game_settings = settings

        room.is_game_started = True
        devices = [self.registry.get(d).to_payload() for d in room.members if self.registry.get(d)]
        logger.info("Channel %s game started with %d guests", room.room_id, len(guests))
        self.broadcaster.emit(room, "game-started", {"roomId": room.room_id, "devices": devices})
        self.broadcaster.sync_room(room)
        return True

    def load_questions(self, room_id, requester_id: str, payload) -> bool:
        room = self.rooms.require_admin(room_id, requester_id, "load questions")
        if room is None:
            return False
        if not room.is_game_started:
            logger.warning("Questions ignored: channel %s has not started", room.room_id)
            return False
        session = GameSession.from_payload(payload)
        if session is None:
            logger.warning("Questions ignored: invalid payload for channel %s", room.room_id)
            return False

        room.cancel_countdown()
        room.game_session = session
        logger.info("Channel %s loaded %d questions (%s)", room.room_id, session.total_questions,
                    ", ".join(session.questions_by_locale))
        self._begin_question(room)
        self.broadcaster.sync_room(room)
        return True

    def submit_answer(self, room_id, device_id: str, question_index, answer_index,
                      time_spent=0) -> Optional[AnswerRecord]:
        room = self.rooms.member_room(room_id, device_id)
        if room is None:
            logger.warning("Answer from %s ignored: not in channel %s", device_id, room_id)
            return None
        session = room.game_session
        if session is None or session.is_showing_results:
            logger.warning("Answer from %s ignored: no active question in %s", device_id, room.room_id)
            return None
        if not _is_int(question_index) or question_index != session.current_question_index:
            logger.warning("Stale answer from %s for question %s (current %d)",
                           device_id, question_index, session.current_question_index)
            return None
        if session.has_answered(device_id, question_index):
            logger.warning("Duplicate answer from %s for question %d", device_id, question_index)
            return None

        device = self.registry.get(device_id)
        question = session.questions_for(device.locale)[question_index]
        if not _is_int(answer_index) or not 0 <= answer_index < len(question.options):
            logger.warning("Answer from %s ignored: invalid option %r", device_id, answer_index)
            return None
        if not isinstance(time_spent, (int, float)) or isinstance(time_spent, bool) or time_spent < 0:
            time_spent = 0.0

        record = session.record_answer(device_id, answer_index, round(float(time_spent), 2), device.locale)
        self.broadcaster.emit(room, "answer-result", {
            "questionIndex": question_index,
            "isCorrect": record.is_correct,
            "points": record.points_awarded,
            "deviceId": device_id,
        })
        self.broadcaster.sync_room(room)
        return record

    def advance_question(self, room_id, requester_id: str) -> bool:
        room = self.rooms.require_admin(room_id, requester_id, "advance question")
        if room is None:
            return False
        session = room.game_session
        if not room.is_game_started or session is None:
            logger.warning("Next question ignored: channel %s has no game in progress", room.room_id)
            return False
        if session.is_showing_results:
            return False

        room.cancel_countdown()
        session.current_question_index += 1

        if session.current_question_index >= session.total_questions:
            self._finish(room)
            return True

        self._begin_question(room)
        logger.info("Channel %s advanced to question %d/%d", room.room_id,
                    session.current_question_index + 1, session.total_questions)
        self.broadcaster.sync_room(room)
        return True

    def reset_game(self, room_id, requester_id: str) -> bool:
        room = self.rooms.require_admin(room_id, requester_id, "reset game")
        if room is None:
            return False
        room.cancel_countdown()
        room.is_game_started = False
        room.game_session = None
        for device_id in room.guest_ids():
            device = self.registry.get(device_id)
            if device is not None:
                device.is_ready = False
        logger.info("Channel %s reset to lobby", room.room_id)
        self.broadcaster.emit(room, "game-reset", {"roomId": room.room_id})
        self.broadcaster.sync_room(room)
        return True

    def _finish(self, room: Room):
        session = room.game_session
        session.is_showing_results = True
        session.timer_remaining_seconds = None
        names = {}
        for device_id in session.answers:
            device = self.registry.get(device_id)
            if device is not None and device.display_name:
                names[device_id] = device.display_name
        session.ranking = compute_ranking(session.answers, list(room.members), names)
        logger.info("Channel %s finished (%d ranked devices)", room.room_id, len(session.ranking))
        self.broadcaster.emit(room, "game-finished", {
            "ranking": session.ranking,
            "totalQuestions": session.total_questions,
        })
        self.broadcaster.sync_room(room)

    # ------------------------------------------------------------------
    # Countdown
    # ------------------------------------------------------------------

    def _begin_question(self, room: Room):
        session = room.game_session
        room.cancel_countdown()
        session.question_start_time = time.time()
        session.timer_remaining_seconds = timer_duration(room.game_settings)
        if session.timer_remaining_seconds is not None:
            room.timer_task = asyncio.create_task(
                self._countdown(room, session, session.current_question_index)
            )

    async def _countdown(self, room: Room, session: GameSession, question_index: int):
        """Tick once per interval; at zero announce the timeout and stop. Never advances."""
        try:
            while True:
                await asyncio.sleep(self.tick_interval)
                if (self.rooms.get(room.room_id) is not room or room.game_session is not session
                        or session.current_question_index != question_index):
                    return
                session.timer_remaining_seconds = max(0, (session.timer_remaining_seconds or 0) - 1)
                self.broadcaster.sync_room(room)
                if session.timer_remaining_seconds == 0:
                    if room.timer_task is asyncio.current_task():
                        room.timer_task = None
                    logger.info("Channel %s question %d timed out", room.room_id, question_index)
                    self.broadcaster.emit(room, "question-timeout", {"questionIndex": question_index})
                    return
        except asyncio.CancelledError:
            pass
