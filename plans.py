"""Plan catalogue: read-only quota lookups plus the default tiers."""
from typing import List, Optional

import structlog
from sqlalchemy.orm import Session

import models
from errors import NotFound, ValidationError

logger = structlog.get_logger(__name__)

FREEMIUM = "Freemium"

# (name, region, billing_cycle, price, currency, jd_limit, cv_limit); None limit = unlimited
DEFAULT_PLANS = [
    ("Freemium", "Global", None, 0, "USD", 1, 10),
    ("Starter", "Pakistan", "Monthly", 5000, "PKR", 10, 500),
    ("Starter", "Pakistan", "SixMonth", 25000, "PKR", 10, 500),
    ("Starter", "Pakistan", "Annual", 50000, "PKR", 10, 500),
    ("Growth", "Pakistan", "Monthly", 12000, "PKR", 25, 1500),
    ("Growth", "Pakistan", "SixMonth", 60000, "PKR", 25, 1500),
    ("Growth", "Pakistan", "Annual", 120000, "PKR", 25, 1500),
    ("Pro", "Pakistan", "Monthly", 25000, "PKR", 50, 3000),
    ("Pro", "Pakistan", "SixMonth", 130000, "PKR", 50, 3000),
    ("Pro", "Pakistan", "Annual", 260000, "PKR", 50, 3000),
    ("Enterprise", "Pakistan", None, None, "PKR", None, None),
    ("Starter", "International", "Monthly", 50, "USD", 10, 1000),
    ("Starter", "International", "SixMonth", 250, "USD", 10, 1000),
    ("Starter", "International", "Annual", 500, "USD", 10, 1000),
    ("Growth", "International", "Monthly", 120, "USD", 25, 3000),
    ("Growth", "International", "SixMonth", 600, "USD", 25, 3000),
    ("Growth", "International", "Annual", 1200, "USD", 25, 3000),
    ("Pro", "International", "Monthly", 250, "USD", 50, 5000),
    ("Pro", "International", "SixMonth", 1250, "USD", 50, 5000),
    ("Pro", "International", "Annual", 2500, "USD", 50, 5000),
    ("Enterprise", "International", None, None, "USD", None, None),
]


def get_plan(db: Session, plan_id: int) -> Optional[models.Plan]:
    return db.get(models.Plan, plan_id)


def get_plan_by_name(db: Session, name: str) -> Optional[models.Plan]:
    return (
        db.query(models.Plan)
        .filter(models.Plan.name == name, models.Plan.is_active.is_(True))
        .order_by(models.Plan.sort_order, models.Plan.id)
        .first()
    )


def list_plans(db: Session, region: Optional[str] = None) -> List[models.Plan]:
    """Active plans, optionally for one region (Global plans are always included)."""
    query = db.query(models.Plan).filter(models.Plan.is_active.is_(True))
    if region:
        query = query.filter(models.Plan.region.in_([region, "Global"]))
    return query.order_by(models.Plan.sort_order, models.Plan.id).all()


def seed_default_plans(db: Session) -> int:
    """Insert DEFAULT_PLANS when the catalogue is empty. Returns rows added."""
    if db.query(models.Plan.id).first() is not None:
        return 0
    for order, (name, region, cycle, price, currency, jd_limit, cv_limit) in enumerate(DEFAULT_PLANS, start=1):
        db.add(
            models.Plan(
                name=name,
                region=region,
                billing_cycle=cycle,
                price=price,
                currency=currency,
                jd_limit=jd_limit,
                cv_limit=cv_limit,
                sort_order=order,
            )
        )
    db.flush()
    logger.info("Seeded default plans", count=len(DEFAULT_PLANS))
    return len(DEFAULT_PLANS)


def assign_plan(db: Session, user: models.User, plan_id: int, reset_usage: bool = False) -> models.User:
    """Move a user to another plan.

    Usage is reset when asked to, when the user had no plan before, or when
    leaving Freemium for a paid tier. Downgrades keep existing usage even if
    it now exceeds the new limit.
    """
    plan = get_plan(db, plan_id)
    if plan is None:
        raise NotFound("Plan not found")
    if not plan.is_active:
        raise ValidationError("Plan is not available")

    current = user.plan
    upgrading_from_free = current is not None and current.name == FREEMIUM and plan.name != FREEMIUM
    if reset_usage or current is None or upgrading_from_free:
        user.jd_used = 0
        user.cv_used = 0

    user.plan_id = plan.id
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("Plan assigned", user_id=user.id, plan_id=plan.id, plan=plan.display_name)
    return user
