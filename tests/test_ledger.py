import threading
from unittest.mock import patch

import pytest
from sqlalchemy.orm import Session

import ledger
import models
from errors import NoActivePlan, QuotaExceeded
from models import ResourceKind


def _used(db: Session, user: models.User, kind: ResourceKind) -> int:
    db.expire_all()
    return db.get(models.User, user.id).used_for(kind)


def test_reserve_increments_by_exactly_count(db_session: Session, make_user):
    user = make_user(jd_limit=5, cv_limit=10, cv_used=3)

    usage = ledger.check_and_reserve(db_session, user.id, ResourceKind.CV, 4)

    assert _used(db_session, user, ResourceKind.CV) == 7
    assert usage.current == 7
    assert usage.limit == 10
    assert usage.remaining == 3
    # The other counter is untouched
    assert _used(db_session, user, ResourceKind.JD) == 0


def test_reserve_is_all_or_nothing(db_session: Session, make_user):
    """5 candidates against 3 remaining slots reserves none of them."""
    user = make_user(cv_limit=10, cv_used=7)

    with pytest.raises(QuotaExceeded) as exc_info:
        ledger.check_and_reserve(db_session, user.id, ResourceKind.CV, 5)

    assert _used(db_session, user, ResourceKind.CV) == 7
    assert exc_info.value.payload() == {"resource": "cv", "current": 7, "limit": 10, "remaining": 3}


def test_reserve_up_to_the_limit_is_allowed(db_session: Session, make_user):
    user = make_user(jd_limit=1)

    usage = ledger.check_and_reserve(db_session, user.id, ResourceKind.JD, 1)
    assert usage.remaining == 0

    with pytest.raises(QuotaExceeded):
        ledger.check_and_reserve(db_session, user.id, ResourceKind.JD, 1)
    assert _used(db_session, user, ResourceKind.JD) == 1


def test_refusal_above_the_limit_reports_zero_remaining(db_session: Session, make_user):
    """After a downgrade usage can sit above the limit; the refusal never reports negative room."""
    user = make_user(cv_limit=10, cv_used=25)

    with pytest.raises(QuotaExceeded) as exc_info:
        ledger.check_and_reserve(db_session, user.id, ResourceKind.CV, 1)

    assert exc_info.value.payload() == {"resource": "cv", "current": 25, "limit": 10, "remaining": 0}
    assert _used(db_session, user, ResourceKind.CV) == 25


def test_user_without_plan_is_refused(db_session: Session, make_user):
    user = make_user(with_plan=False)

    with pytest.raises(NoActivePlan):
        ledger.check_and_reserve(db_session, user.id, ResourceKind.JD, 1)
    assert _used(db_session, user, ResourceKind.JD) == 0


def test_unlimited_plan_always_admits(db_session: Session, make_user):
    user = make_user(jd_limit=None, cv_limit=None, cv_used=250)

    usage = ledger.check_and_reserve(db_session, user.id, ResourceKind.CV, 100)

    assert usage.unlimited is True
    assert usage.remaining is None
    assert _used(db_session, user, ResourceKind.CV) == 350


def test_enterprise_plan_is_unlimited_regardless_of_limits(db_session: Session, make_user):
    user = make_user(jd_limit=0, cv_limit=0, plan_name="Enterprise")

    ledger.check_and_reserve(db_session, user.id, ResourceKind.JD, 3)

    assert _used(db_session, user, ResourceKind.JD) == 3


def test_negative_limit_means_unlimited(db_session: Session, make_user):
    user = make_user(cv_limit=-1)

    usage = ledger.check_and_reserve(db_session, user.id, ResourceKind.CV, 40)

    assert usage.unlimited is True


def test_reserve_rejects_non_positive_count(db_session: Session, make_user):
    user = make_user()

    with pytest.raises(ValueError):
        ledger.check_and_reserve(db_session, user.id, ResourceKind.CV, 0)


def test_release_never_goes_below_zero(db_session: Session, make_user):
    user = make_user(cv_limit=10, cv_used=2)

    ledger.release(db_session, user.id, ResourceKind.CV, 1)
    assert _used(db_session, user, ResourceKind.CV) == 1

    ledger.release(db_session, user.id, ResourceKind.CV, 5)
    assert _used(db_session, user, ResourceKind.CV) == 0


def test_release_quietly_reports_failure_instead_of_raising(db_session: Session, make_user):
    user = make_user()

    with patch("ledger.release", side_effect=RuntimeError("database went away")):
        assert ledger.release_quietly(db_session, user.id, ResourceKind.JD, 1) is False

    assert ledger.release_quietly(db_session, user.id, ResourceKind.JD, 1) is True


def test_concurrent_full_remaining_reservations_admit_at_most_one(session_factory, make_user):
    user = make_user(cv_limit=10, cv_used=4)
    barrier = threading.Barrier(2)
    outcomes = []
    lock = threading.Lock()

    def reserve_remaining():
        session = session_factory()
        try:
            barrier.wait()
            try:
                ledger.check_and_reserve(session, user.id, ResourceKind.CV, 6)
                outcome = "admitted"
            except QuotaExceeded:
                outcome = "refused"
            except Exception as exc:  # surfaced through the assertion below
                outcome = repr(exc)
        finally:
            session.close()
        with lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=reserve_remaining) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert sorted(outcomes) == ["admitted", "refused"]

    session = session_factory()
    try:
        assert session.get(models.User, user.id).cv_used == 10
    finally:
        session.close()


def test_get_usage_reports_both_kinds(db_session: Session, make_user):
    user = make_user(jd_limit=3, cv_limit=None, jd_used=1, cv_used=42)

    report = ledger.get_usage(db_session, user.id)

    assert report.jd.used == 1
    assert report.jd.limit == 3
    assert report.jd.remaining == 2
    assert report.cv.used == 42
    assert report.cv.unlimited is True
    assert report.plan.name == "Test Plan"


def test_get_usage_floors_remaining_after_downgrade(db_session: Session, make_user):
    user = make_user(cv_limit=10, cv_used=25)

    report = ledger.get_usage(db_session, user.id)

    assert report.cv.used == 25
    assert report.cv.remaining == 0


def test_reset_usage_only_touches_requested_counters(db_session: Session, make_user):
    user = make_user(jd_limit=5, cv_limit=50, jd_used=3, cv_used=30)

    ledger.reset_usage(db_session, user.id, jd=False, cv=True)

    assert _used(db_session, user, ResourceKind.JD) == 3
    assert _used(db_session, user, ResourceKind.CV) == 0
