from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class LandmarkIn(BaseModel):
    x: float
    y: float
    z: float = 0.0
    visibility: float = Field(0.0, ge=0.0, le=1.0)


class ScoreRequest(BaseModel):
    landmarks: List[Optional[LandmarkIn]]


class FormScoreOut(BaseModel):
    is_valid: bool
    confidence: int = Field(ge=0, le=100)
    feedback: List[str]
    metrics: Dict[str, float] = Field(default_factory=dict)


class SessionConfigIn(BaseModel):
    smoothing_alpha: Optional[float] = Field(default=None, gt=0.0, le=1.0)
    stability_frames: Optional[int] = Field(default=None, ge=1)
    grace_frames: Optional[int] = Field(default=None, ge=1)
    min_detections_per_sec: Optional[float] = Field(default=None, gt=0.0)
    max_detections_per_sec: Optional[float] = Field(default=None, gt=0.0)


class SessionConfigOut(BaseModel):
    smoothing_alpha: float
    stability_frames: int
    grace_frames: int
    min_detections_per_sec: float
    max_detections_per_sec: float


class SessionCreateResponse(BaseModel):
    session_id: str
    config: SessionConfigOut


class FrameRequest(BaseModel):
    landmarks: Optional[List[Optional[LandmarkIn]]] = Field(default=None, description="null when no person was detected")
    latency_ms: Optional[float] = Field(default=None, ge=0.0, description="client-side detection cost")


class FrameResponse(BaseModel):
    frame_idx: int
    score: FormScoreOut
    hold_event: Optional[str] = Field(default=None, description="hold_started | hold_lost")
    hold_active: bool
    interval_ms: float = Field(description="recommended delay before the next detection")


class SessionStatusResponse(BaseModel):
    session_id: str
    hold_active: bool
    holds: int = Field(0, ge=0)
    interval_ms: float
    score: Optional[FormScoreOut] = None
