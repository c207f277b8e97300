"""ElevenLabs voice metadata model and response debugging helpers."""

from __future__ import annotations

import json
import logging
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, ValidationError

logger = logging.getLogger(__name__)


class ElevenLabsVoiceLabels(BaseModel):
    model_config = ConfigDict(extra="forbid")

    accent: str
    age: str
    gender: str
    language: Optional[str] = None
    use_case: Literal["social media"]


class ElevenLabsVoiceData(BaseModel):
    """Shape of one entry in the ``GET /voices`` response."""

    model_config = ConfigDict(extra="forbid")

    voice_id: str
    name: Optional[str] = None
    description: Optional[str]
    category: Literal["premade", "professional"]
    labels: ElevenLabsVoiceLabels
    preview_url: str
    samples: None
    settings: None
    sharing: None
    safety_control: None
    fine_tuning: dict[str, Any]
    is_legacy: Literal[False]
    is_mixed: Literal[False]
    high_quality_base_model_ids: list[str]
    available_for_tiers: list[Literal["plus", "pro", "enterprise"]]
    voice_verification: dict[str, Any]
    permission_on_resource: None


def check_objects_against_schema(objects: list, model: type[BaseModel]) -> None:
    """Validate every object against *model*; log and re-raise the first failure."""
    for obj in objects:
        try:
            model.model_validate(obj)
        except ValidationError as e:
            logger.error("Schema validation failed: %s", e)
            raise


def log_distinct_property_values(objects: list[dict], omit: tuple[str, ...] = ()) -> dict[str, list]:
    """Log the distinct values seen for each property across *objects*.

    Nested values are compared by their JSON encoding.  Returns the collected
    values keyed by property name, in first-seen order.
    """
    values: dict[str, list] = {}
    for obj in objects:
        for key, value in obj.items():
            if key in omit:
                continue
            if isinstance(value, (dict, list)):
                value = json.dumps(value, sort_keys=True)
            seen = values.setdefault(key, [])
            if value not in seen:
                seen.append(value)
    for key, seen in values.items():
        logger.info("%s: %s", key, ", ".join(str(v) for v in seen))
    return values
