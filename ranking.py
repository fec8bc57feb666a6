"""Ranking batch orchestration.

A batch goes through

    ADMITTING -> EXTRACTING -> PERSISTING -> SCORING -> FINALIZING -> COMPLETED | FAILED

for both entry points: ``rank_uploads`` (fresh files, charges 1 JD + N CV
credits) and ``rank_by_reference`` (stored documents, charges nothing).

Once the batch row exists it always ends up completed or failed. Oracle
failures for one candidate become Error rows; anything that escapes the
scoring stage fails the whole batch and is re-raised as BatchFailed.
"""
import asyncio
import contextlib
import enum
import os
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Iterator, List, Optional, Protocol, Sequence

import structlog
from sqlalchemy.orm import Session

import crud
import ledger
import models
import schemas
from errors import BatchFailed, ExtractionError, ExtractionFailed, NotFound, UnsupportedType, ValidationError
from extraction import extract_text, is_supported
from models import ResourceKind
from observability import metric_scope
from scoring import ScoringClient, error_score, rank_scores
from settings import Settings, get_settings

logger = structlog.get_logger(__name__)

UNTITLED_JD = "Untitled Job Description"


class BatchStage(str, enum.Enum):
    ADMITTING = "admitting"
    EXTRACTING = "extracting"
    PERSISTING = "persisting"
    SCORING = "scoring"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FAILED = "failed"


class Upload(Protocol):
    """What we need from an uploaded file (FastAPI's UploadFile fits)."""

    filename: Optional[str]
    content_type: Optional[str]
    file: BinaryIO


@dataclass
class StagedUpload:
    filename: str
    content_type: Optional[str]
    path: str
    size: int

    def read_bytes(self) -> bytes:
        return Path(self.path).read_bytes()

    @property
    def title(self) -> str:
        return os.path.splitext(self.filename)[0] or UNTITLED_JD


class BatchRun:
    """Stage tracking plus a logger bound to the batch being run."""

    def __init__(self, user_id: int, variant: str):
        self.stage: Optional[BatchStage] = None
        self.log = logger.bind(user_id=user_id, variant=variant)

    def enter(self, stage: BatchStage, **details) -> None:
        self.stage = stage
        self.log = self.log.bind(stage=stage.value)
        self.log.info("Batch stage", **details)

    def bind(self, **values) -> None:
        self.log = self.log.bind(**values)


@contextlib.contextmanager
def staged_uploads(uploads: Sequence[Upload], tmp_dir: Optional[str] = None) -> Iterator[List[StagedUpload]]:
    """Copy uploads to temporary files, removing every one of them on exit."""
    staged: List[StagedUpload] = []
    paths: List[str] = []
    try:
        for upload in uploads:
            suffix = os.path.splitext(upload.filename or "")[1]
            with tempfile.NamedTemporaryFile(delete=False, dir=tmp_dir, prefix="upload-", suffix=suffix) as tmp:
                paths.append(tmp.name)
                shutil.copyfileobj(upload.file, tmp)
                size = tmp.tell()
            staged.append(
                StagedUpload(
                    filename=upload.filename or os.path.basename(tmp.name),
                    content_type=upload.content_type,
                    path=tmp.name,
                    size=size,
                )
            )
        yield staged
    finally:
        for path in paths:
            try:
                os.unlink(path)
            except FileNotFoundError:
                pass
            except OSError:
                logger.warning("Failed to delete staged upload", path=path, exc_info=True)


def _validate_upload_request(
    jd_file: Optional[Upload], jd_text: Optional[str], cv_files: Sequence[Upload], settings: Settings
) -> None:
    if jd_file is None and not (jd_text and jd_text.strip()):
        raise ValidationError("Please upload one JD and at least one CV file")
    if not cv_files:
        raise ValidationError("Please upload one JD and at least one CV file")
    if len(cv_files) > settings.max_candidates_per_batch:
        raise ValidationError(f"At most {settings.max_candidates_per_batch} CV files can be ranked at once")
    for upload in ([jd_file] if jd_file is not None else []) + list(cv_files):
        if not is_supported(upload.content_type):
            raise UnsupportedType(upload.content_type)


def check_upload_sizes(staged: Sequence[StagedUpload], settings: Settings) -> None:
    limit_mb = settings.max_upload_bytes // (1024 * 1024)
    for item in staged:
        if item.size > settings.max_upload_bytes:
            raise ValidationError(f"{item.filename} exceeds the {limit_mb}MB file size limit")


def _admit(db: Session, user_id: int, candidate_count: int, run: BatchRun) -> None:
    """Reserve 1 JD and N CV credits, or neither."""
    run.enter(BatchStage.ADMITTING, candidates=candidate_count)
    ledger.check_and_reserve(db, user_id, ResourceKind.JD, 1)
    try:
        ledger.check_and_reserve(db, user_id, ResourceKind.CV, candidate_count)
    except Exception:
        ledger.release_quietly(db, user_id, ResourceKind.JD, 1)
        raise


def _extract_candidate(item: StagedUpload) -> str:
    text = extract_text(item.read_bytes(), item.content_type, item.filename)
    if not text.strip():
        raise ExtractionFailed(item.filename)
    return text


def _record_failure(db: Session, batch_id: int, user_id: int, message: str, run: BatchRun) -> None:
    try:
        crud.fail_batch(db, batch_id, user_id, message)
        db.commit()
    except Exception:
        db.rollback()
        run.log.error("Could not record batch failure", exc_info=True)


async def _score_and_finalize(
    db: Session,
    batch: models.RankingBatch,
    jd: models.JobDescription,
    jd_text: str,
    candidates: List[schemas.ScoringCandidate],
    extraction_errors: List[schemas.CandidateScore],
    client: ScoringClient,
    run: BatchRun,
) -> models.RankingBatch:
    batch_id, user_id = batch.id, batch.owner_id
    run.bind(batch_id=batch_id)
    try:
        run.enter(BatchStage.SCORING, candidates=len(candidates))
        scores = await client.score_batch(jd_text, candidates) if candidates else []
        ranked = rank_scores(list(scores) + extraction_errors)

        run.enter(BatchStage.FINALIZING, results=len(ranked))
        crud.complete_batch(db, batch, ranked)
        crud.add_ranked_cvs(db, jd, len(candidates))
        db.commit()
    except asyncio.CancelledError:
        db.rollback()
        run.enter(BatchStage.FAILED, error="cancelled")
        _record_failure(db, batch_id, user_id, "Ranking was cancelled", run)
        raise
    except Exception as exc:
        db.rollback()
        message = str(exc) or exc.__class__.__name__
        run.enter(BatchStage.FAILED, error=message)
        run.log.error("Ranking batch failed", exc_info=exc)
        _record_failure(db, batch_id, user_id, message, run)
        raise BatchFailed(batch_id, message) from exc

    db.refresh(batch)
    run.enter(BatchStage.COMPLETED)
    return batch


def _count_verdicts(batch: models.RankingBatch, metrics) -> None:
    errors = sum(1 for entry in batch.entries if entry.verdict == models.Verdict.ERROR)
    metrics.put_metric("batches_completed", 1, "Count")
    metrics.put_metric("candidates_scored", len(batch.entries) - errors, "Count")
    metrics.put_metric("candidate_errors", errors, "Count")


@metric_scope
async def rank_uploads(
    db: Session,
    user_id: int,
    cv_files: Sequence[Upload],
    client: ScoringClient,
    jd_file: Optional[Upload] = None,
    jd_text: Optional[str] = None,
    settings: Optional[Settings] = None,
    metrics=None,
) -> models.RankingBatch:
    """Rank freshly uploaded CVs against an uploaded (or pasted) job description.

    Charges one JD credit and one CV credit per file. A JD that cannot be
    read releases both reservations. A CV that cannot be read is kept in the
    results as an Error row; its credit is released only when
    ``charge_unreadable_candidates`` is off.
    """
    settings = settings or get_settings()
    metrics.set_namespace("TalentRanker")
    metrics.set_property("user_id", user_id)
    metrics.put_metric("batches_submitted", 1, "Count")

    _validate_upload_request(jd_file, jd_text, cv_files, settings)
    run = BatchRun(user_id, variant="upload")

    uploads = ([jd_file] if jd_file is not None else []) + list(cv_files)
    with staged_uploads(uploads, settings.upload_tmp_dir) as staged:
        check_upload_sizes(staged, settings)
        jd_upload = staged[0] if jd_file is not None else None
        cv_uploads = staged[1:] if jd_file is not None else staged

        _admit(db, user_id, len(cv_uploads), run)

        try:
            run.enter(BatchStage.EXTRACTING)
            if jd_upload is not None:
                jd_content = extract_text(jd_upload.read_bytes(), jd_upload.content_type, jd_upload.filename)
                if not jd_content.strip():
                    raise ExtractionFailed(jd_upload.filename)
            else:
                jd_content = jd_text

            readable = []
            extraction_errors = []
            for item in cv_uploads:
                try:
                    readable.append((item, _extract_candidate(item)))
                except ExtractionError as exc:
                    run.log.warning("Candidate extraction failed", filename=item.filename, error=exc.message)
                    extraction_errors.append(error_score(None, item.filename, exc.message))

            run.enter(BatchStage.PERSISTING, readable=len(readable), unreadable=len(extraction_errors))
            jd = crud.create_job_description(
                db,
                schemas.JobDescriptionCreate(
                    title=jd_upload.title if jd_upload is not None else UNTITLED_JD,
                    content=jd_content,
                    filename=jd_upload.filename if jd_upload is not None else None,
                ),
                user_id,
            )
            candidates = []
            for item, text in readable:
                cv = crud.create_candidate(
                    db,
                    schemas.CandidateDocumentCreate(filename=item.filename, content=text, file_size=item.size),
                    user_id,
                )
                candidates.append(schemas.ScoringCandidate(candidate_id=cv.id, filename=cv.filename, text=text))
            batch = crud.create_batch(db, jd.id, user_id)
            db.commit()
        except Exception:
            # Nothing was persisted; every reservation is handed back
            db.rollback()
            ledger.release_quietly(db, user_id, ResourceKind.JD, 1)
            ledger.release_quietly(db, user_id, ResourceKind.CV, len(cv_uploads))
            raise

        if extraction_errors and not settings.charge_unreadable_candidates:
            ledger.release_quietly(db, user_id, ResourceKind.CV, len(extraction_errors))

        try:
            batch = await _score_and_finalize(
                db, batch, jd, jd_content, candidates, extraction_errors, client, run
            )
        except BatchFailed:
            metrics.put_metric("batches_failed", 1, "Count")
            raise

    _count_verdicts(batch, metrics)
    return batch


@metric_scope
async def rank_by_reference(
    db: Session,
    user_id: int,
    jd_id: Optional[int],
    cv_ids: Sequence[int],
    client: ScoringClient,
    settings: Optional[Settings] = None,
    metrics=None,
) -> models.RankingBatch:
    """Rank stored CVs against a stored job description. Charges no credits."""
    settings = settings or get_settings()
    metrics.set_namespace("TalentRanker")
    metrics.set_property("user_id", user_id)
    metrics.put_metric("batches_submitted", 1, "Count")

    if not jd_id or not cv_ids:
        raise ValidationError("Job Description ID and at least one CV ID are required")
    unique_ids = list(dict.fromkeys(cv_ids))
    if len(unique_ids) > settings.max_candidates_per_batch:
        raise ValidationError(f"At most {settings.max_candidates_per_batch} CVs can be ranked at once")

    run = BatchRun(user_id, variant="reference")
    run.enter(BatchStage.ADMITTING, candidates=len(unique_ids), charged=False)

    run.enter(BatchStage.EXTRACTING)
    jd = crud.get_job_description(db, jd_id, user_id, active_only=True)
    if jd is None:
        raise NotFound("Job Description not found")
    cvs = crud.get_active_candidates(db, unique_ids, user_id)
    if not cvs:
        raise NotFound("No valid CVs found")

    run.enter(BatchStage.PERSISTING, jd_id=jd.id, candidates=len(cvs))
    candidates = [
        schemas.ScoringCandidate(candidate_id=cv.id, filename=cv.filename, text=cv.content) for cv in cvs
    ]
    jd_content = jd.content
    batch = crud.create_batch(db, jd.id, user_id)
    db.commit()

    try:
        batch = await _score_and_finalize(db, batch, jd, jd_content, candidates, [], client, run)
    except BatchFailed:
        metrics.put_metric("batches_failed", 1, "Count")
        raise

    _count_verdicts(batch, metrics)
    return batch
