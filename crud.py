from typing import List, Optional, Sequence

from sqlalchemy.orm import Session, joinedload, selectinload

import models
import schemas
from errors import NotFound, ValidationError
from models import BatchStatus, RecordStatus, UpgradeStatus


# --- User CRUD ---
def get_user_by_id(db: Session, user_id: int):
    """Get a user by their primary key ID."""
    return db.query(models.User).filter(models.User.id == user_id).first()


def get_user_by_email(db: Session, email: str):
    return db.query(models.User).filter(models.User.email == email).first()


def create_user(db: Session, user: schemas.UserCreate):
    db_user = models.User(email=user.email, plan_id=user.plan_id, jd_used=0, cv_used=0)
    db.add(db_user)
    db.flush()  # Assign ID without committing
    db.refresh(db_user)
    return db_user


# --- Upgrade requests ---
def create_upgrade_request(db: Session, user: models.User, request: schemas.UpgradeRequestCreate):
    """Record a pending request to move `user` to another plan; an admin acts on it later."""
    if request.plan_id is None:
        raise ValidationError("Plan ID is required")
    requested_plan = db.get(models.Plan, request.plan_id)
    if requested_plan is None:
        raise NotFound("Requested plan not found")

    db_request = models.UpgradeRequest(
        user_id=user.id,
        current_plan_id=user.plan_id,
        requested_plan_id=requested_plan.id,
        status=UpgradeStatus.PENDING,
        message=request.message or "",
    )
    db.add(db_request)
    db.commit()
    db.refresh(db_request)
    return db_request


# --- Job description CRUD ---
def create_job_description(db: Session, jd: schemas.JobDescriptionCreate, user_id: int):
    db_jd = models.JobDescription(
        owner_id=user_id,
        title=jd.title,
        description=jd.description if jd.description is not None else jd.content[:500],
        content=jd.content,
        filename=jd.filename,
        status=RecordStatus.ACTIVE,
        ranked_cvs_count=0,
    )
    db.add(db_jd)
    db.flush()
    return db_jd


def get_job_descriptions_for_user(db: Session, user_id: int):
    """Active job descriptions for a user, newest first."""
    return (
        db.query(models.JobDescription)
        .filter(models.JobDescription.owner_id == user_id, models.JobDescription.status == RecordStatus.ACTIVE)
        .order_by(models.JobDescription.created_at.desc(), models.JobDescription.id.desc())
        .all()
    )


def get_job_description(db: Session, jd_id: int, user_id: int, active_only: bool = False):
    query = db.query(models.JobDescription).filter(
        models.JobDescription.id == jd_id, models.JobDescription.owner_id == user_id
    )
    if active_only:
        query = query.filter(models.JobDescription.status == RecordStatus.ACTIVE)
    return query.first()


def archive_job_description(db: Session, jd_id: int, user_id: int) -> bool:
    db_jd = get_job_description(db, jd_id, user_id)
    if not db_jd:
        return False  # Not found or doesn't belong to this user
    db_jd.status = RecordStatus.ARCHIVED
    db.commit()
    return True


def add_ranked_cvs(db: Session, jd: models.JobDescription, count: int) -> None:
    jd.ranked_cvs_count = models.JobDescription.ranked_cvs_count + count
    db.add(jd)


# --- Candidate CRUD ---
def create_candidate(db: Session, cv: schemas.CandidateDocumentCreate, user_id: int):
    db_cv = models.CandidateDocument(
        owner_id=user_id,
        filename=cv.filename,
        content=cv.content,
        file_size=cv.file_size,
        status=RecordStatus.ACTIVE,
    )
    db.add(db_cv)
    db.flush()
    return db_cv


def get_candidates_for_user(db: Session, user_id: int):
    """Active candidate documents for a user, newest first."""
    return (
        db.query(models.CandidateDocument)
        .filter(models.CandidateDocument.owner_id == user_id, models.CandidateDocument.status == RecordStatus.ACTIVE)
        .order_by(models.CandidateDocument.created_at.desc(), models.CandidateDocument.id.desc())
        .all()
    )


def get_candidate(db: Session, cv_id: int, user_id: int, active_only: bool = False):
    query = db.query(models.CandidateDocument).filter(
        models.CandidateDocument.id == cv_id, models.CandidateDocument.owner_id == user_id
    )
    if active_only:
        query = query.filter(models.CandidateDocument.status == RecordStatus.ACTIVE)
    return query.first()


def get_active_candidates(db: Session, cv_ids: Sequence[int], user_id: int) -> List[models.CandidateDocument]:
    """Owned, active candidates among ``cv_ids``, in the order the ids were given."""
    rows = (
        db.query(models.CandidateDocument)
        .filter(
            models.CandidateDocument.id.in_(list(cv_ids)),
            models.CandidateDocument.owner_id == user_id,
            models.CandidateDocument.status == RecordStatus.ACTIVE,
        )
        .all()
    )
    by_id = {row.id: row for row in rows}
    return [by_id[cv_id] for cv_id in dict.fromkeys(cv_ids) if cv_id in by_id]


def archive_candidate(db: Session, cv_id: int, user_id: int) -> bool:
    db_cv = get_candidate(db, cv_id, user_id)
    if not db_cv:
        return False
    db_cv.status = RecordStatus.ARCHIVED
    db.commit()
    return True


# --- Ranking batch CRUD ---
def create_batch(db: Session, jd_id: int, user_id: int):
    db_batch = models.RankingBatch(
        owner_id=user_id,
        job_description_id=jd_id,
        status=BatchStatus.PROCESSING,
        record_status=RecordStatus.ACTIVE,
    )
    db.add(db_batch)
    db.flush()
    return db_batch


def complete_batch(db: Session, batch: models.RankingBatch, scores: List[schemas.CandidateScore]):
    """Store the ordered result rows and move the batch to completed."""
    if batch.status != BatchStatus.PROCESSING:
        raise ValueError(f"Batch {batch.id} is already {batch.status.value}")
    batch.entries = [
        models.RankingEntry(
            position=position,
            candidate_id=score.candidate_id,
            filename=score.filename,
            verdict=score.verdict,
            confidence=score.confidence,
            error=score.error,
        )
        for position, score in enumerate(scores)
    ]
    batch.status = BatchStatus.COMPLETED
    batch.error = None
    db.add(batch)
    return batch


def fail_batch(db: Session, batch_id: int, user_id: int, message: str):
    """Move a processing batch to failed. Completed/failed batches are left as they are."""
    db_batch = get_batch(db, batch_id, user_id)
    if db_batch is None or db_batch.status != BatchStatus.PROCESSING:
        return db_batch
    db_batch.status = BatchStatus.FAILED
    db_batch.error = message
    db.add(db_batch)
    return db_batch


def _batch_query(db: Session):
    return db.query(models.RankingBatch).options(
        joinedload(models.RankingBatch.job_description),
        selectinload(models.RankingBatch.entries),
    )


def get_batches_for_user(db: Session, user_id: int, limit: int = 50):
    """Most recent active batches for a user, newest first."""
    return (
        _batch_query(db)
        .filter(models.RankingBatch.owner_id == user_id, models.RankingBatch.record_status == RecordStatus.ACTIVE)
        .order_by(models.RankingBatch.created_at.desc(), models.RankingBatch.id.desc())
        .limit(limit)
        .all()
    )


def get_batch(db: Session, batch_id: int, user_id: int) -> Optional[models.RankingBatch]:
    """Fetch one batch by id, archived included."""
    return (
        _batch_query(db)
        .filter(models.RankingBatch.id == batch_id, models.RankingBatch.owner_id == user_id)
        .first()
    )


def archive_batch(db: Session, batch_id: int, user_id: int) -> bool:
    db_batch = get_batch(db, batch_id, user_id)
    if not db_batch:
        return False
    db_batch.record_status = RecordStatus.ARCHIVED
    db.commit()
    return True
