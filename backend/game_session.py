from pydantic import BaseModel, ConfigDict, Field, StrictInt, ValidationError, model_validator
from pydantic.alias_generators import to_camel
from typing import Dict, List, Optional, Sequence, Union
import logging
import time

import config

logger = logging.getLogger(__name__)


class Question(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: Union[StrictInt, str]
    text: str = Field(min_length=1)
    options: List[str] = Field(min_length=2)
    correct_answer_index: StrictInt
    points: StrictInt = Field(default=config.DEFAULT_QUESTION_POINTS, ge=0)
    difficulty: str = "medium"
    category: str = ""

    @model_validator(mode="after")
    def check_answer_index(self):
        if not 0 <= self.correct_answer_index < len(self.options):
            raise ValueError("correctAnswerIndex must point at one of the options")
        return self

    def to_payload(self, reveal_answer: bool) -> dict:
        payload = self.model_dump(by_alias=True)
        if not reveal_answer:
            payload.pop("correctAnswerIndex", None)
        return payload


class AnswerRecord:
    def __init__(self, question_index: int, chosen_answer_index: int, time_spent_seconds: float,
                 is_correct: bool, points_awarded: int):
        self.question_index = question_index
        self.chosen_answer_index = chosen_answer_index
        self.time_spent_seconds = time_spent_seconds
        self.is_correct = is_correct
        self.points_awarded = points_awarded
        self.timestamp = time.time()

    def to_payload(self) -> dict:
        return {
            "questionIndex": self.question_index,
            "chosenAnswerIndex": self.chosen_answer_index,
            "timeSpentSeconds": self.time_spent_seconds,
            "isCorrect": self.is_correct,
            "pointsAwarded": self.points_awarded,
            "timestamp": int(self.timestamp * 1000),
        }


def _parse_question_list(raw) -> Optional[List[Question]]:
    if not isinstance(raw, list) or not raw:
        return None
    try:
        return [Question.model_validate(item) for item in raw]
    except ValidationError as exc:
        logger.warning("Rejected question list: %s", exc.errors(include_url=False))
        return None


class GameSession:
    """Question progress, countdown state and answers for one round."""

    def __init__(self, questions_by_locale: Dict[str, List[Question]], canonical_locale: str,
                 is_multilingual: bool = False):
        self.questions_by_locale = questions_by_locale
        self.canonical_locale = canonical_locale
        self.is_multilingual = is_multilingual
        self.current_question_index = 0
        self.question_start_time = time.time()
        self.timer_remaining_seconds: Optional[int] = None
        self.is_showing_results = False
        self.answers: Dict[str, List[AnswerRecord]] = {}  # device_id -> records in answer order
        self.ranking: List[dict] = []

    @classmethod
    def from_payload(cls, payload) -> Optional["GameSession"]:
        """Build a session from a flat question list or a ``{locale: [questions]}`` mapping."""
        if isinstance(payload, list):
            questions = _parse_question_list(payload)
            if questions is None:
                return None
            return cls({config.DEFAULT_LOCALE: questions}, config.DEFAULT_LOCALE)

        if not isinstance(payload, dict) or not payload:
            logger.warning("Rejected questions payload of type %s", type(payload).__name__)
            return None

        by_locale: Dict[str, List[Question]] = {}
        for locale, raw in payload.items():
            questions = _parse_question_list(raw)
            if questions is None or not isinstance(locale, str) or not locale.strip():
                return None
            by_locale[locale.strip()] = questions

        lengths = {len(questions) for questions in by_locale.values()}
        if len(lengths) != 1:
            logger.warning("Rejected multilingual questions: locales have different lengths %s", sorted(lengths))
            return None

        canonical = config.DEFAULT_LOCALE if config.DEFAULT_LOCALE in by_locale else next(iter(by_locale))
        return cls(by_locale, canonical, is_multilingual=True)

    @property
    def questions(self) -> List[Question]:
        return self.questions_by_locale[self.canonical_locale]

    @property
    def total_questions(self) -> int:
        return len(self.questions)

    def questions_for(self, locale: Optional[str]) -> List[Question]:
        return self.questions_by_locale.get(locale or "", self.questions)

    def has_answered(self, device_id: str, question_index: int) -> bool:
        return any(r.question_index == question_index for r in self.answers.get(device_id, ()))

    def record_answer(self, device_id: str, answer_index: int, time_spent: float,
                      locale: Optional[str] = None) -> AnswerRecord:
        index = self.current_question_index
        question = self.questions_for(locale)[index]
        is_correct = answer_index == question.correct_answer_index
        record = AnswerRecord(
            question_index=index,
            chosen_answer_index=answer_index,
            time_spent_seconds=time_spent,
            is_correct=is_correct,
            points_awarded=question.points if is_correct else 0,
        )
        self.answers.setdefault(device_id, []).append(record)
        return record

    def answered_device_ids(self, question_index: int) -> List[str]:
        return [device_id for device_id in self.answers if self.has_answered(device_id, question_index)]

    def is_revealed(self, question_index: int) -> bool:
        return self.is_showing_results or question_index < self.current_question_index


def compute_ranking(answers: Dict[str, List[AnswerRecord]], join_order: Sequence[str] = (),
                    display_names: Optional[Dict[str, str]] = None) -> List[dict]:
    """Rank every device with at least one answer.

    Ordered by total points, then accuracy, then number of correct answers,
    then join order (members first, departed devices after them by id).
    """
    display_names = display_names or {}
    order = {device_id: i for i, device_id in enumerate(join_order)}
    rows = []
    for device_id, records in answers.items():
        if not records:
            continue
        total = len(records)
        correct = sum(1 for r in records if r.is_correct)
        rows.append({
            "deviceId": device_id,
            "displayName": display_names.get(device_id) or device_id,
            "totalPoints": sum(r.points_awarded for r in records),
            "correctAnswers": correct,
            "totalAnswered": total,
            "accuracy": int(correct * 100 / total + 0.5) if total else 0,
        })

    rows.sort(key=lambda row: (
        -row["totalPoints"],
        -row["accuracy"],
        -row["correctAnswers"],
        order.get(row["deviceId"], len(order)),
        row["deviceId"],
    ))
    for position, row in enumerate(rows, start=1):
        row["position"] = position
    return rows
