"""
Pydantic models for the analysis backend's WebSocket and REST payloads.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

GENDERS = ("male", "female", "unknown")


class ProtocolError(ValueError):
    """Raised when an inbound payload is not a usable message."""


class WireModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class PersonObservation(WireModel):
    id: Optional[str] = None
    gender: str = "unknown"
    age: int = 0
    emotion: str = "unknown"
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    bbox: List[float] = Field(default_factory=list)

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> Any:
        return None if value is None else str(value)

    @field_validator("gender", mode="before")
    @classmethod
    def _normalise_gender(cls, value: Any) -> str:
        token = str(value or "").strip().lower()
        return token if token in GENDERS else "unknown"

    @field_validator("age", mode="before")
    @classmethod
    def _round_age(cls, value: Any) -> Any:
        if isinstance(value, float):
            return int(round(value))
        return value if value is not None else 0


class FrameAnalysisResult(WireModel):
    frame_number: Optional[int] = None
    people_count: int = Field(default=0, ge=0)
    tracked_people: List[PersonObservation] = Field(default_factory=list)
    current_ad: str = "neutral"
    processing_time_ms: float = Field(default=0.0, ge=0.0)
    timestamp: Optional[str] = None


class CameraInfo(WireModel):
    index: int = Field(ge=0)
    device_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("device_id", "deviceId")
    )
    name: str = ""
    resolution: str = "640x480"
    fps: int = 30

    def has_usable_handle(self) -> bool:
        return bool(self.device_id) and len(self.device_id) > 5


class AgeRange(WireModel):
    min: float = 0
    max: float = 0
    avg: float = 0


class TimelineEntry(WireModel):
    timestamp: str = ""
    people_count: int = 0
    dominant_emotion: str = ""
    dominant_gender: str = ""
    current_ad: str = ""


class SystemStats(WireModel):
    total_frames: int = 0
    people_detected: int = 0
    detection_rate: float = 0.0
    gender_distribution: Dict[str, int] = Field(default_factory=dict)
    emotion_distribution: Dict[str, int] = Field(default_factory=dict)
    age_range: AgeRange = Field(default_factory=AgeRange)
    timeline: List[TimelineEntry] = Field(default_factory=list)

    @property
    def total_gender_detections(self) -> int:
        return sum(self.gender_distribution.values())

    @property
    def total_emotion_detections(self) -> int:
        return sum(self.emotion_distribution.values())

    def most_common_gender(self) -> str:
        return _most_common(self.gender_distribution)

    def most_common_emotion(self) -> str:
        return _most_common(self.emotion_distribution)

    def recent_timeline(self, limit: int = 20) -> List[TimelineEntry]:
        return self.timeline[-limit:] if limit > 0 else []


def _most_common(distribution: Dict[str, int]) -> str:
    if not distribution:
        return "None"
    # first key wins ties
    best_key, best_count = None, None
    for key, count in distribution.items():
        if best_count is None or count > best_count:
            best_key, best_count = key, count
    return best_key


def parse_stats_response(payload: Any) -> SystemStats:
    """Accept both ``{"stats": {...}}`` and a flat stats object."""
    if not isinstance(payload, dict):
        raise ProtocolError("stats response must be a JSON object")
    inner = payload.get("stats")
    return SystemStats.model_validate(inner if isinstance(inner, dict) else payload)


# -- server -> client -------------------------------------------------------


class ConnectionPayload(WireModel):
    message: str = ""
    current_ad: str = "neutral"
    camera_running: bool = False


class ConnectionMessage(WireModel):
    type: Literal["connection"] = "connection"
    data: ConnectionPayload = Field(default_factory=ConnectionPayload)


class FrameProcessedPayload(WireModel):
    result: FrameAnalysisResult = Field(default_factory=FrameAnalysisResult)
    processing_time_ms: float = Field(default=0.0, ge=0.0)
    frame_number: Optional[int] = None
    ad_duration: Optional[float] = None


class FrameProcessedMessage(WireModel):
    """Canonical analysis-result event; ``source`` records the wire type it came from."""

    type: Literal["frame_processed"] = "frame_processed"
    data: FrameProcessedPayload = Field(default_factory=FrameProcessedPayload)
    source: str = "frame_processed"


class FrameDataPayload(WireModel):
    timestamp: Optional[str] = None
    people_count: int = Field(default=0, ge=0)
    tracked_people: List[PersonObservation] = Field(default_factory=list)
    current_ad: str = "neutral"
    ad_duration: Optional[float] = None


class AdChangePayload(WireModel):
    ad: str


class AdChangeMessage(WireModel):
    type: Literal["ad_change"] = "ad_change"
    data: AdChangePayload


class ErrorPayload(WireModel):
    error: str = "Unknown error"


class ErrorMessage(WireModel):
    type: Literal["error"] = "error"
    data: ErrorPayload = Field(default_factory=ErrorPayload)


class HeartbeatAckMessage(WireModel):
    type: Literal["heartbeat_ack", "heartbeat"] = "heartbeat_ack"
    data: Dict[str, Any] = Field(default_factory=dict)


class UnknownMessage(WireModel):
    type: str
    data: Any = None


InboundMessage = Union[
    ConnectionMessage,
    FrameProcessedMessage,
    AdChangeMessage,
    ErrorMessage,
    HeartbeatAckMessage,
    UnknownMessage,
]


def _frame_data_as_processed(data: Any) -> FrameProcessedMessage:
    legacy = FrameDataPayload.model_validate(data or {})
    result = FrameAnalysisResult(
        people_count=legacy.people_count,
        tracked_people=legacy.tracked_people,
        current_ad=legacy.current_ad,
        timestamp=legacy.timestamp,
    )
    return FrameProcessedMessage(
        data=FrameProcessedPayload(result=result, ad_duration=legacy.ad_duration),
        source="frame_data",
    )


def parse_inbound(raw: str | bytes) -> InboundMessage:
    """Decode one WebSocket text frame into a typed message."""
    try:
        payload = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise ProtocolError(f"invalid JSON: {exc}") from exc
    if not isinstance(payload, dict) or not isinstance(payload.get("type"), str):
        raise ProtocolError("message must be an object with a string 'type'")

    kind = payload["type"]
    data = payload.get("data")
    try:
        if kind == "connection":
            return ConnectionMessage.model_validate({"data": data or {}})
        elif kind == "frame_processed":
            return FrameProcessedMessage.model_validate({"data": data or {}})
        elif kind == "frame_data":
            return _frame_data_as_processed(data)
        elif kind == "ad_change":
            return AdChangeMessage.model_validate({"data": data})
        elif kind == "error":
            return ErrorMessage.model_validate({"data": data or {}})
        elif kind in ("heartbeat_ack", "heartbeat"):
            return HeartbeatAckMessage.model_validate({"type": kind, "data": data or {}})
        else:
            return UnknownMessage(type=kind, data=data)
    except ValidationError as exc:
        raise ProtocolError(f"invalid '{kind}' payload: {exc.error_count()} error(s)") from exc


# -- client -> server -------------------------------------------------------


class FramePayload(WireModel):
    frame_data: str
    timestamp: str = Field(default_factory=utc_timestamp)
    camera_id: str = "frontend_camera"
    screen_id: str = "default_screen"


class FrameMessage(WireModel):
    type: Literal["frame"] = "frame"
    data: FramePayload


class HeartbeatPayload(WireModel):
    timestamp: str = Field(default_factory=utc_timestamp)


class HeartbeatMessage(WireModel):
    type: Literal["heartbeat"] = "heartbeat"
    data: HeartbeatPayload = Field(default_factory=HeartbeatPayload)


OutboundMessage = Union[FrameMessage, HeartbeatMessage]


# -- local views ------------------------------------------------------------


class StateEnvelope(BaseModel):
    type: Literal["state"] = "state"
    payload: Dict[str, Any]
