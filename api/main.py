from __future__ import annotations

import dataclasses
import logging
import threading
import time
import uuid
from typing import Dict, Optional

from fastapi import Body, FastAPI, HTTPException, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from analysis.analyzer import HoldMonitor
from analysis.form import FormScore, score_form
from analysis.utils import HoldConfig, _get_env_float, _get_env_int
from api.schemas import (
    FormScoreOut,
    FrameRequest,
    FrameResponse,
    ScoreRequest,
    SessionConfigIn,
    SessionConfigOut,
    SessionCreateResponse,
    SessionStatusResponse,
)
from pose.backend import to_landmark_set


logger = logging.getLogger(__name__)


app = FastAPI(title="holdwatch API")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Landmarks are estimated client-side; the server only scores and tracks holds,
# so sessions carry no detector.
SESSIONS: Dict[str, HoldMonitor] = {}
SESSION_SEEN: Dict[str, float] = {}
SESSIONS_LOCK = threading.Lock()

# Clients that drop off never DELETE their session
MAX_SESSIONS = _get_env_int("HOLDWATCH_MAX_SESSIONS", 1000)
SESSION_IDLE_SECONDS = _get_env_float("HOLDWATCH_SESSION_IDLE_SECONDS", 600.0)


def _score_out(score: FormScore) -> FormScoreOut:
    return FormScoreOut(**score.to_dict())


def _get_session(session_id: str) -> HoldMonitor:
    with SESSIONS_LOCK:
        monitor = SESSIONS.get(session_id)
        if monitor is not None:
            SESSION_SEEN[session_id] = time.monotonic()
    if monitor is None:
        raise HTTPException(status_code=404, detail="Unknown session_id")
    return monitor


async def _expire_idle_sessions() -> None:
    cutoff = time.monotonic() - SESSION_IDLE_SECONDS
    with SESSIONS_LOCK:
        stale = [sid for sid, seen in SESSION_SEEN.items() if seen < cutoff]
        expired = [(sid, SESSIONS.pop(sid, None)) for sid in stale]
        for sid in stale:
            SESSION_SEEN.pop(sid, None)
    for sid, monitor in expired:
        if monitor is not None:
            await monitor.teardown()
            logger.info("Session %s expired after %.0fs idle", sid, SESSION_IDLE_SECONDS)


def _status(session_id: str, monitor: HoldMonitor) -> SessionStatusResponse:
    latest = monitor.latest_score
    return SessionStatusResponse(
        session_id=session_id,
        hold_active=monitor.hold_active,
        holds=monitor.fsm.holds,
        interval_ms=monitor.interval_ms,
        score=_score_out(latest) if latest is not None else None,
    )


@app.get("/health", response_class=PlainTextResponse)
async def health() -> str:
    return "ok"


@app.post("/score", response_model=FormScoreOut)
async def score(req: ScoreRequest):
    return _score_out(score_form(to_landmark_set(req.landmarks)))


@app.post("/sessions", response_model=SessionCreateResponse, status_code=201)
async def create_session(overrides: Optional[SessionConfigIn] = Body(default=None)):
    try:
        config = HoldConfig.from_env()
        if overrides is not None:
            config = dataclasses.replace(config, **overrides.model_dump(exclude_none=True))
        monitor = HoldMonitor(config=config)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    await _expire_idle_sessions()
    session_id = str(uuid.uuid4())
    with SESSIONS_LOCK:
        if len(SESSIONS) >= MAX_SESSIONS:
            raise HTTPException(status_code=503, detail="Too many active sessions")
        SESSIONS[session_id] = monitor
        SESSION_SEEN[session_id] = time.monotonic()
    logger.info("Session %s created", session_id)
    return SessionCreateResponse(
        session_id=session_id,
        config=SessionConfigOut(**dataclasses.asdict(config)),
    )


@app.post("/sessions/{session_id}/frames", response_model=FrameResponse)
async def submit_frame(session_id: str, req: FrameRequest):
    monitor = _get_session(session_id)
    if req.latency_ms is not None:
        monitor.record_latency(req.latency_ms)
    res = monitor.process_landmarks(req.landmarks)
    return FrameResponse(
        frame_idx=res.frame_idx,
        score=_score_out(res.score),
        hold_event=res.hold_event,
        hold_active=res.hold_active,
        interval_ms=monitor.interval_ms,
    )


@app.get("/sessions/{session_id}", response_model=SessionStatusResponse)
async def session_status(session_id: str):
    return _status(session_id, _get_session(session_id))


@app.post("/sessions/{session_id}/reset", response_model=SessionStatusResponse)
async def reset_session(session_id: str):
    monitor = _get_session(session_id)
    monitor.reset()
    return _status(session_id, monitor)


@app.delete("/sessions/{session_id}", status_code=204)
async def delete_session(session_id: str):
    with SESSIONS_LOCK:
        monitor = SESSIONS.pop(session_id, None)
        SESSION_SEEN.pop(session_id, None)
    if monitor is None:
        raise HTTPException(status_code=404, detail="Unknown session_id")
    await monitor.teardown()
    logger.info("Session %s closed", session_id)
    return Response(status_code=204)
