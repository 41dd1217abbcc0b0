from __future__ import annotations

from typing import Dict, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, field_validator

PathPart = Union[str, int]


class EventSpec(BaseModel):
    """What one known event name means and where its resource identifier lives."""

    model_config = ConfigDict(frozen=True)

    service: str
    carries_tags: bool = False
    created: bool = False
    destroyed: bool = False
    id_path: Tuple[PathPart, ...]
    id_markers: Optional[Tuple[str, str]] = None
    is_arn: bool = True


class CanonicalEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    service: str
    resource_id: str
    is_arn: bool
    # None when the inbound event does not carry tags and they must be fetched.
    tags: Optional[Dict[str, str]] = None
    created: bool = False
    destroyed: bool = False

    @field_validator("service", "resource_id")
    @classmethod
    def required_stripped(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("value is required")
        return value.strip()
