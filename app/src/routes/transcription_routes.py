"""
Transcription job API routes.

Endpoints:
    POST   /api/transcript            - submit an episode & create job
    GET    /api/progress/{job_id}     - stream progress (Server-Sent Events)
    GET    /api/jobs/{job_id}         - poll job progress
    GET    /api/result/{job_id}       - fetch the finished transcript
    DELETE /api/jobs/{job_id}         - clean up a finished job
    GET    /api/health                - liveness
"""

import json
import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field, field_validator, model_validator

from commons import limiter
from configs.config import get_config
from security import safe_error_response, validate_job_id, validate_source_url
from src.transcription.errors import InvalidTransitionError
from src.transcription.models import JobRequest, JobState
from src.transcription.worker import JobController

logger = logging.getLogger(__name__)

cfg = get_config()

router = APIRouter(prefix="/api", tags=["transcription"])


# ── Request models ───────────────────────────────────────────────────────


class TranscriptRequest(BaseModel):
    episode_title: str = Field(..., min_length=1, max_length=500)
    podcast_name: Optional[str] = Field(default=None, max_length=300)
    audio_url: Optional[str] = Field(default=None, max_length=2048)
    feed_url: Optional[str] = Field(default=None, max_length=2048)
    duration_seconds: Optional[int] = Field(default=None, ge=0)
    summarize: bool = True

    @field_validator("audio_url", "feed_url")
    @classmethod
    def _http_only(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip():
            return None
        return validate_source_url(value.strip())

    @model_validator(mode="after")
    def _has_source(self) -> "TranscriptRequest":
        if not (self.audio_url or self.feed_url or (self.podcast_name or "").strip()):
            raise ValueError(
                "One of audio_url, feed_url or podcast_name is required"
            )
        return self

    def to_job_request(self) -> JobRequest:
        return JobRequest(
            episode_title=self.episode_title.strip(),
            podcast_name=(self.podcast_name or "").strip() or None,
            audio_url=self.audio_url,
            feed_url=self.feed_url,
            duration_seconds=self.duration_seconds,
            summarize=self.summarize,
        )


def get_controller(request: Request) -> JobController:
    return request.app.state.controller


def _require_job(controller: JobController, job_id: str):
    job = controller.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


# ── Submit ───────────────────────────────────────────────────────────────


@router.post("/transcript")
@limiter.limit("10/hour")
async def create_transcript_job(
    request: Request,
    body: TranscriptRequest,
    background_tasks: BackgroundTasks,
) -> dict:
    """Queue a transcription job and return its id immediately."""
    controller = get_controller(request)
    try:
        job = controller.submit(body.to_job_request())
    except Exception as exc:
        safe_error_response(exc, context="create_transcript_job")

    background_tasks.add_task(controller.run, job.job_id)
    logger.info("Background task queued for job %s", job.job_id)
    return {"job_id": job.job_id, "message": "Transcription started"}


# ── Progress ─────────────────────────────────────────────────────────────


@router.get("/progress/{job_id}")
@limiter.limit("60/minute")
async def stream_progress(request: Request, job_id: str) -> StreamingResponse:
    """Server-Sent Events: every changed snapshot until the job finishes."""
    validate_job_id(job_id)
    controller = get_controller(request)
    _require_job(controller, job_id)

    # Starlette cancels this generator when the client goes away
    async def events():
        yield f"data: {json.dumps({'status': 'connected'})}\n\n"
        async for snapshot in controller.bus.subscribe(
            job_id, interval=cfg.PROGRESS_POLL_INTERVAL_SECONDS
        ):
            yield f"data: {json.dumps(snapshot)}\n\n"
        logger.debug("Progress stream for job %s finished", job_id)

    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.get("/jobs/{job_id}")
@limiter.limit("120/minute")
def get_status(request: Request, job_id: str) -> dict:
    """Return the current state and step progress of a job."""
    validate_job_id(job_id)
    controller = get_controller(request)
    job = _require_job(controller, job_id)
    snapshot = controller.snapshot(job_id) or {"complete": job.is_terminal}
    complete = snapshot.pop("complete")
    return {
        "job_id": job_id,
        "state": job.state.value,
        "complete": complete,
        "progress": snapshot,
    }


# ── Result ───────────────────────────────────────────────────────────────


@router.get("/result/{job_id}")
@limiter.limit("60/minute")
def get_result(request: Request, job_id: str) -> JSONResponse:
    """Return the transcript once done; 202 while the job is still running."""
    validate_job_id(job_id)
    controller = get_controller(request)
    job = _require_job(controller, job_id)

    if job.state == JobState.FAILED:
        return JSONResponse(status_code=500, content={"error": job.error})
    if job.state != JobState.COMPLETE:
        return JSONResponse(
            status_code=202,
            content={"message": "Transcription still in progress"},
        )

    controller.mark_result_read(job_id)
    logger.info("Result retrieved for job %s", job_id)
    return JSONResponse(content=job.result.to_dict())


# ── Delete ───────────────────────────────────────────────────────────────


@router.delete("/jobs/{job_id}")
@limiter.limit("10/minute")
def delete_job_endpoint(request: Request, job_id: str) -> dict:
    """Remove a finished job and its progress."""
    validate_job_id(job_id)
    controller = get_controller(request)
    try:
        removed = controller.cleanup(job_id)
    except InvalidTransitionError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    if not removed:
        raise HTTPException(status_code=404, detail="Job not found")
    logger.info("Job %s deleted", job_id)
    return {"message": f"Job {job_id} deleted successfully", "job_id": job_id}


# ── Health ───────────────────────────────────────────────────────────────


@router.get("/health")
def health(request: Request) -> dict:
    controller = get_controller(request)
    return {"status": "ok", "jobs": len(controller.jobs)}
