"""Credit ledger: per-user JD/CV usage against the user's plan.

Every mutation is a single UPDATE on the user row, committed straight away,
so concurrent admissions for one user are serialised by the database.
"""
from typing import Optional

import structlog
from sqlalchemy import case, update
from sqlalchemy.orm import Session

import models
import schemas
from errors import NoActivePlan, NotFound, QuotaExceeded
from models import ResourceKind

logger = structlog.get_logger(__name__)


def _counter(kind: ResourceKind):
    return models.User.jd_used if kind == ResourceKind.JD else models.User.cv_used


def _user_update(user_id: int, *criteria):
    return (
        update(models.User)
        .where(models.User.id == user_id, *criteria)
        .execution_options(synchronize_session=False)
    )


def _load_user(db: Session, user_id: int) -> models.User:
    user = db.get(models.User, user_id)
    if user is None:
        raise NotFound("User not found")
    return user


def _read_used(db: Session, user_id: int, kind: ResourceKind) -> int:
    return db.query(_counter(kind)).filter(models.User.id == user_id).scalar()


def check_and_reserve(db: Session, user_id: int, kind: ResourceKind, count: int = 1) -> schemas.UsageSnapshot:
    """Reserve ``count`` units of ``kind`` for the user, all or nothing.

    Raises NoActivePlan when the user has no plan and QuotaExceeded (with the
    unchanged usage) when the reservation would overshoot the limit.
    """
    if count < 1:
        raise ValueError("count must be >= 1")

    user = _load_user(db, user_id)
    plan: Optional[models.Plan] = user.plan
    if plan is None:
        raise NoActivePlan()

    counter = _counter(kind)
    if plan.is_unlimited(kind):
        db.execute(_user_update(user_id).values({counter: counter + count}))
        db.commit()
        current = _read_used(db, user_id, kind)
        logger.info("Credits reserved", user_id=user_id, kind=kind.value, count=count, current=current, unlimited=True)
        return schemas.UsageSnapshot(current=current, unlimited=True)

    limit = plan.limit_for(kind)
    result = db.execute(
        _user_update(user_id, counter <= limit - count)
        .values({counter: counter + count})
    )
    if result.rowcount != 1:
        db.rollback()
        current = _read_used(db, user_id, kind)
        usage = schemas.UsageSnapshot(current=current, limit=limit, remaining=max(0, limit - current))
        logger.info("Quota exceeded", user_id=user_id, kind=kind.value, requested=count, current=current, limit=limit)
        raise QuotaExceeded(kind, usage)

    db.commit()
    current = _read_used(db, user_id, kind)
    logger.info("Credits reserved", user_id=user_id, kind=kind.value, count=count, current=current, limit=limit)
    return schemas.UsageSnapshot(current=current, limit=limit, remaining=limit - current)


def release(db: Session, user_id: int, kind: ResourceKind, count: int = 1) -> None:
    """Give back ``count`` units; the counter never drops below zero."""
    if count < 1:
        return
    counter = _counter(kind)
    db.execute(
        _user_update(user_id)
        .values({counter: case((counter >= count, counter - count), else_=0)})
    )
    db.commit()
    logger.info("Credits released", user_id=user_id, kind=kind.value, count=count)


def release_quietly(db: Session, user_id: int, kind: ResourceKind, count: int = 1) -> bool:
    """Compensating release: failures are logged, never raised."""
    try:
        release(db, user_id, kind, count)
        return True
    except Exception:
        db.rollback()
        logger.error(
            "Credit release failed; usage needs manual reconciliation",
            user_id=user_id,
            kind=kind.value,
            count=count,
            exc_info=True,
        )
        return False


def _kind_usage(user: models.User, plan: Optional[models.Plan], kind: ResourceKind) -> schemas.KindUsage:
    used = user.used_for(kind)
    if plan is None:
        return schemas.KindUsage(used=used)
    if plan.is_unlimited(kind):
        return schemas.KindUsage(used=used, unlimited=True)
    limit = plan.limit_for(kind)
    return schemas.KindUsage(used=used, limit=limit, remaining=max(0, limit - used))


def get_usage(db: Session, user_id: int) -> schemas.UsageReport:
    user = _load_user(db, user_id)
    plan = user.plan
    return schemas.UsageReport(
        jd=_kind_usage(user, plan, ResourceKind.JD),
        cv=_kind_usage(user, plan, ResourceKind.CV),
        plan=schemas.PlanSummary.model_validate(plan) if plan else None,
    )


def reset_usage(db: Session, user_id: int, jd: bool = True, cv: bool = True) -> None:
    values = {}
    if jd:
        values[models.User.jd_used] = 0
    if cv:
        values[models.User.cv_used] = 0
    if not values:
        return
    db.execute(_user_update(user_id).values(values))
    db.commit()
    logger.info("Usage reset", user_id=user_id, jd=jd, cv=cv)
