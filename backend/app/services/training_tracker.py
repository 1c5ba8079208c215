"""
Training job tracker.

Turns training provider callbacks into TrainingJob state transitions.

A callback is first classified into exactly one update variant, each carrying
only the fields it may set, and then merged into the job by
``apply_training_update``. Completed and failed jobs are terminal: later
non-terminal callbacks are ignored, and a repeated success only fills in a
missing model id or version.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Tuple, Union
from urllib.parse import urlparse

from sqlalchemy.orm import Session

from app.core.exceptions import TrainingJobNotFoundError
from app.models import TrainingJob, User
from app.services.notifications import Notifier, send_notification
from app.services.subscription_ledger import parse_provider_datetime

logger = logging.getLogger(__name__)

STARTING_PROGRESS = 5
PROCESSING_PROGRESS = 50
MAX_RUNNING_PROGRESS = 95


@dataclass(frozen=True)
class TrainingStarted:
    provisional_model_id: str
    status: str = "training"
    progress: int = STARTING_PROGRESS


@dataclass(frozen=True)
class TrainingProgressed:
    progress: int
    status: str = "training"


@dataclass(frozen=True)
class TrainingSucceeded:
    completed_at: datetime
    model_id: Optional[str] = None
    model_version: Optional[str] = None
    status: str = "completed"
    progress: int = 100


@dataclass(frozen=True)
class TrainingFailed:
    error_message: str
    completed_at: datetime
    status: str = "failed"
    progress: int = 0


@dataclass(frozen=True)
class TrainingStatusChanged:
    """Any other provider status, stored verbatim."""

    status: str


TrainingUpdate = Union[TrainingStarted, TrainingProgressed, TrainingSucceeded, TrainingFailed, TrainingStatusChanged]


def _progress_from_metrics(metrics: Optional[Dict[str, Any]]) -> int:
    if metrics:
        step = metrics.get("current_step", metrics.get("step"))
        total = metrics.get("total_steps")
        if step is not None and total:
            return min(int(float(step) * 100 / float(total) + 0.5), MAX_RUNNING_PROGRESS)
    return PROCESSING_PROGRESS


def parse_model_reference(output: Any) -> Tuple[Optional[str], Optional[str]]:
    """
    Extract (model id, version) from a training output.

    Accepts ``{"version": "owner/model:version"}`` first; otherwise a URL (the
    output itself, or its ``weights`` / ``url`` field) whose last two path
    segments are the model id and the version.
    """
    if isinstance(output, dict) and isinstance(output.get("version"), str):
        reference = output["version"]
        if ":" in reference:
            name, version = reference.rsplit(":", 1)
            return name.rsplit("/", 1)[-1], version

    url = None
    if isinstance(output, str):
        url = output
    elif isinstance(output, dict):
        url = output.get("weights") or output.get("url")

    if isinstance(url, str):
        segments = [s for s in urlparse(url).path.split("/") if s]
        if len(segments) >= 2:
            return segments[-2], segments[-1]

    return None, None


def classify_callback(payload: Dict[str, Any], now: Optional[datetime] = None) -> TrainingUpdate:
    """Classify a provider callback body into one update variant."""
    now = now or datetime.utcnow()
    status = payload.get("status")

    if status == "starting":
        return TrainingStarted(provisional_model_id=payload.get("id"))

    if status == "processing":
        return TrainingProgressed(progress=_progress_from_metrics(payload.get("metrics")))

    if status == "succeeded":
        model_id, model_version = parse_model_reference(payload.get("output"))
        if model_version is None and isinstance(payload.get("version"), str):
            model_version = payload["version"]
        return TrainingSucceeded(
            completed_at=parse_provider_datetime(payload.get("completed_at")) or now,
            model_id=model_id,
            model_version=model_version,
        )

    if status == "failed":
        return TrainingFailed(
            error_message=payload.get("error") or payload.get("logs") or "Training failed",
            completed_at=now,
        )

    if status == "canceled":
        return TrainingFailed(error_message="Training was canceled", completed_at=now)

    return TrainingStatusChanged(status=str(status))


def apply_training_update(job: TrainingJob, update: TrainingUpdate) -> bool:
    """
    Merge an update into a job in place.

    Returns:
        True when the update moved the job into a terminal state
    """
    if job.is_terminal_state:
        if isinstance(update, TrainingSucceeded) and job.status == "completed":
            # Backfill only
            if job.model_id is None or job.model_id == job.external_job_id:
                job.model_id = update.model_id or job.model_id
            if job.model_version is None:
                job.model_version = update.model_version
        return False

    if isinstance(update, TrainingStarted):
        job.status = update.status
        job.progress = update.progress
        if job.model_id is None:
            job.model_id = update.provisional_model_id
        return False

    if isinstance(update, TrainingProgressed):
        job.status = update.status
        job.progress = update.progress
        return False

    if isinstance(update, TrainingSucceeded):
        job.status = update.status
        job.progress = update.progress
        job.completed_at = update.completed_at
        if update.model_id:
            job.model_id = update.model_id
        if update.model_version:
            job.model_version = update.model_version
        return True

    if isinstance(update, TrainingFailed):
        job.status = update.status
        job.progress = update.progress
        job.error_message = update.error_message
        job.completed_at = update.completed_at
        return True

    job.status = update.status
    return False


class TrainingJobTracker:
    """Applies training provider callbacks to training jobs."""

    def __init__(self, db: Session, notifier: Notifier):
        self.db = db
        self.notifier = notifier

    def get_by_external_id(self, external_job_id: str) -> Optional[TrainingJob]:
        return (
            self.db.query(TrainingJob)
            .filter(TrainingJob.external_job_id == external_job_id)
            .first()
        )

    async def apply_callback(self, payload: Dict[str, Any]) -> TrainingJob:
        """
        Apply one callback to its job.

        Args:
            payload: Callback body with id, status, completed_at, error, output, logs, metrics, version

        Returns:
            The updated TrainingJob

        Raises:
            TrainingJobNotFoundError: If no job has the callback's id
        """
        external_job_id = payload.get("id")
        job = self.get_by_external_id(external_job_id) if external_job_id else None
        if job is None:
            logger.error(f"Training record not found for job ID: {external_job_id}")
            raise TrainingJobNotFoundError(f"Training job not found: {external_job_id}")

        previous_status = job.status
        update = classify_callback(payload)
        became_terminal = apply_training_update(job, update)
        self.db.commit()
        self.db.refresh(job)

        logger.info(
            f"Training job {external_job_id}: {previous_status} -> {job.status} "
            f"(progress={job.progress}, update={type(update).__name__})"
        )

        if became_terminal:
            await self._notify(job)

        return job

    async def _notify(self, job: TrainingJob) -> None:
        user = self.db.query(User).filter(User.id == job.user_id).first()
        if user is None:
            return
        if job.status == "completed":
            await send_notification(
                self.notifier,
                user,
                "Your model is ready",
                f"Training of '{job.model_name}' finished. You can now generate images with it.",
            )
        else:
            await send_notification(
                self.notifier,
                user,
                "Model training failed",
                f"Training of '{job.model_name}' failed: {job.error_message}",
            )
