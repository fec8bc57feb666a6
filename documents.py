"""Job description / CV library uploads.

Each upload reserves its credits before the file is read; a job description
that cannot be read gives its credit back, unreadable CVs follow the
``charge_unreadable_candidates`` setting like ranking batches do.
"""
from typing import Optional, Sequence

import structlog
from sqlalchemy.orm import Session

import crud
import ledger
import models
import schemas
from errors import ExtractionError, ExtractionFailed, UnsupportedType, ValidationError
from extraction import extract_text, is_supported
from models import ResourceKind
from ranking import UNTITLED_JD, Upload, check_upload_sizes, staged_uploads
from settings import Settings, get_settings

logger = structlog.get_logger(__name__)


def upload_job_description(
    db: Session,
    user_id: int,
    file: Optional[Upload] = None,
    title: Optional[str] = None,
    content: Optional[str] = None,
    description: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> models.JobDescription:
    settings = settings or get_settings()
    if file is None and not (content and content.strip()):
        raise ValidationError("Please provide either a PDF file or job description text")
    if file is not None and not is_supported(file.content_type):
        raise UnsupportedType(file.content_type)

    with staged_uploads([file] if file is not None else [], settings.upload_tmp_dir) as staged:
        check_upload_sizes(staged, settings)
        ledger.check_and_reserve(db, user_id, ResourceKind.JD, 1)
        try:
            if staged:
                jd_file = staged[0]
                text = extract_text(jd_file.read_bytes(), jd_file.content_type, jd_file.filename)
                if not text.strip():
                    raise ExtractionFailed(jd_file.filename)
                default_title = jd_file.title
            else:
                jd_file = None
                text = content
                default_title = UNTITLED_JD

            jd = crud.create_job_description(
                db,
                schemas.JobDescriptionCreate(
                    title=title or default_title,
                    content=text,
                    description=description,
                    filename=jd_file.filename if jd_file else None,
                ),
                user_id,
            )
            db.commit()
        except Exception:
            db.rollback()
            ledger.release_quietly(db, user_id, ResourceKind.JD, 1)
            raise

    db.refresh(jd)
    logger.info("Job description uploaded", user_id=user_id, jd_id=jd.id, chars=len(text))
    return jd


def upload_candidates(
    db: Session,
    user_id: int,
    files: Sequence[Upload],
    settings: Optional[Settings] = None,
) -> schemas.CandidateUploadResult:
    settings = settings or get_settings()
    if not files:
        raise ValidationError("Please upload at least one CV file")
    if len(files) > settings.max_candidates_per_batch:
        raise ValidationError(f"At most {settings.max_candidates_per_batch} CV files can be uploaded at once")
    for upload in files:
        if not is_supported(upload.content_type):
            raise UnsupportedType(upload.content_type)

    with staged_uploads(files, settings.upload_tmp_dir) as staged:
        check_upload_sizes(staged, settings)
        usage = ledger.check_and_reserve(db, user_id, ResourceKind.CV, len(staged))

        uploaded = []
        errors = []
        try:
            for item in staged:
                try:
                    text = extract_text(item.read_bytes(), item.content_type, item.filename)
                    if not text.strip():
                        raise ExtractionFailed(item.filename)
                except ExtractionError as exc:
                    errors.append(schemas.UploadError(filename=item.filename, error=exc.message))
                    continue
                uploaded.append(
                    crud.create_candidate(
                        db,
                        schemas.CandidateDocumentCreate(filename=item.filename, content=text, file_size=item.size),
                        user_id,
                    )
                )
            db.commit()
        except Exception:
            db.rollback()
            ledger.release_quietly(db, user_id, ResourceKind.CV, len(staged))
            raise

    if errors and not settings.charge_unreadable_candidates:
        if ledger.release_quietly(db, user_id, ResourceKind.CV, len(errors)):
            usage = schemas.UsageSnapshot(
                current=usage.current - len(errors),
                limit=usage.limit,
                remaining=None if usage.remaining is None else usage.remaining + len(errors),
                unlimited=usage.unlimited,
            )

    logger.info("CVs uploaded", user_id=user_id, uploaded=len(uploaded), failed=len(errors))
    return schemas.CandidateUploadResult(
        uploaded=[schemas.CandidateDocument.model_validate(cv) for cv in uploaded],
        errors=errors,
        usage=usage,
    )
