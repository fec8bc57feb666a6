import pytest
from sqlalchemy.orm import Session

import models
import plans
from errors import NotFound, ValidationError
from models import ResourceKind


def test_default_catalogue_is_seeded_once(db_session: Session):
    assert plans.seed_default_plans(db_session) == 0

    freemium = plans.get_plan_by_name(db_session, plans.FREEMIUM)
    assert (freemium.jd_limit, freemium.cv_limit) == (1, 10)


def test_list_plans_filters_by_region_and_keeps_global(db_session: Session):
    listed = plans.list_plans(db_session, region="Pakistan")

    assert {p.region for p in listed} == {"Global", "Pakistan"}
    assert listed[0].name == plans.FREEMIUM
    assert "Growth (Monthly)" in [p.display_name for p in listed]


def test_enterprise_plans_are_unlimited(db_session: Session):
    enterprise = next(p for p in plans.list_plans(db_session, region="International") if p.name == "Enterprise")

    assert enterprise.is_unlimited(ResourceKind.JD)
    assert enterprise.is_unlimited(ResourceKind.CV)


def _plan(db: Session, name: str, region: str = "International", cycle: str = "Monthly") -> models.Plan:
    return (
        db.query(models.Plan)
        .filter(models.Plan.name == name, models.Plan.region == region, models.Plan.billing_cycle == cycle)
        .one()
    )


def test_leaving_freemium_resets_usage(db_session: Session, make_user):
    user = make_user(with_plan=False)
    user = plans.assign_plan(db_session, user, plans.get_plan_by_name(db_session, plans.FREEMIUM).id)
    user.jd_used, user.cv_used = 1, 9
    db_session.commit()

    user = plans.assign_plan(db_session, user, _plan(db_session, "Starter").id)

    assert (user.jd_used, user.cv_used) == (0, 0)


def test_downgrade_keeps_existing_usage(db_session: Session, make_user):
    user = make_user(with_plan=False)
    user = plans.assign_plan(db_session, user, _plan(db_session, "Pro").id)
    user.cv_used = 4000
    db_session.commit()

    user = plans.assign_plan(db_session, user, _plan(db_session, "Starter").id)

    assert user.cv_used == 4000
    assert user.plan.cv_limit == 1000


def test_assign_plan_rejects_unknown_and_inactive_plans(db_session: Session, make_user):
    user = make_user()
    retired = models.Plan(name="Legacy", region="Test", currency="USD", jd_limit=1, cv_limit=1, is_active=False)
    db_session.add(retired)
    db_session.commit()

    with pytest.raises(NotFound):
        plans.assign_plan(db_session, user, 999999)
    with pytest.raises(ValidationError):
        plans.assign_plan(db_session, user, retired.id)
