from pydantic import BaseModel, ConfigDict, Field, StrictInt, ValidationError
from pydantic.alias_generators import to_camel
from typing import Annotated, Optional, Tuple
import logging

import config

logger = logging.getLogger(__name__)


def _bounded(bounds: Tuple[int, int]):
    low, high = bounds
    return Annotated[StrictInt, Field(ge=low, le=high)]


class GameSettings(BaseModel):
    """Admin-chosen game configuration. Every field is required; a null timer means untimed."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    question_count: _bounded(config.QUESTION_COUNT_RANGE)
    timer_duration_seconds: Optional[_bounded(config.TIMER_DURATION_RANGE)]
    max_category_selections: _bounded(config.MAX_CATEGORY_SELECTIONS_RANGE)
    top_categories_count: _bounded(config.TOP_CATEGORIES_RANGE)
    low_time_threshold_seconds: _bounded(config.LOW_TIME_THRESHOLD_RANGE)
    critical_time_threshold_seconds: _bounded(config.CRITICAL_TIME_THRESHOLD_RANGE)

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True)


def parse_settings(raw) -> Optional[GameSettings]:
    """Validate a candidate settings object. Returns None if any field is missing, mistyped or out of range."""
    if not isinstance(raw, dict):
        logger.warning("Rejected game settings: expected an object, got %s", type(raw).__name__)
        return None
    try:
        return GameSettings.model_validate(raw)
    except ValidationError as exc:
        logger.warning("Rejected game settings: %s", exc.errors(include_url=False))
        return None


def max_category_selections(settings: Optional[GameSettings]) -> int:
    if settings is None:
        return config.MAX_CATEGORY_SELECTIONS
    return settings.max_category_selections


def timer_duration(settings: Optional[GameSettings]) -> Optional[int]:
    if settings is None:
        return config.DEFAULT_TIMER_SECONDS
    return settings.timer_duration_seconds


def timer_status(settings: Optional[GameSettings], remaining: Optional[int]) -> Optional[str]:
    if remaining is None:
        return None
    if settings is None:
        low, critical = config.DEFAULT_LOW_TIME_THRESHOLD, config.DEFAULT_CRITICAL_TIME_THRESHOLD
    else:
        low, critical = settings.low_time_threshold_seconds, settings.critical_time_threshold_seconds
    if remaining <= critical:
        return "critical"
    if remaining <= low:
        return "low"
    return "normal"
