import json

import pytest
from sqlalchemy import select

from helpers import day, user
from layersrank.domain.badges import (
    DEFAULT_CATALOGUE,
    InProgress,
    Locked,
    Unlocked,
    advance,
    load_catalogue,
)
from layersrank.domain.leaderboard import Metric
from layersrank.models import BadgeProgress, BadgeStatus, Event, EventType
from layersrank.services import aggregation_service, badge_service, event_service
from layersrank.services.badge_service import BadgeEvaluationStale


def _applications(session, record, n, count):
    for _ in range(count):
        record(user(n), event_type="APPLICATION", event_name="APPLICATION_SUBMIT", occurred_at=day(1))
    aggregation_service.apply_pending(session, user(n))
    session.commit()


def _row(session, n, badge_id):
    stmt = select(BadgeProgress).where(
        BadgeProgress.user_id == user(n), BadgeProgress.badge_id == badge_id
    )
    return session.execute(stmt).scalar_one_or_none()


class TestAdvance:
    def test_locked_without_progress(self):
        assert advance(Locked(), 0, 5, day(1)) == Locked()

    def test_progress_starts_badge(self):
        assert advance(Locked(), 2, 5, day(1)) == InProgress(progress=2)

    def test_threshold_unlocks_in_one_step(self):
        assert advance(Locked(), 7, 5, day(1)) == Unlocked(progress=7, at=day(1))

    def test_started_badge_does_not_relock(self):
        assert advance(InProgress(progress=3), 0, 5, day(1)) == InProgress(progress=0)

    def test_unlocked_is_terminal(self):
        unlocked = Unlocked(progress=5, at=day(1))
        assert advance(unlocked, 0, 5, day(9)) is unlocked
        assert advance(unlocked, 50, 5, day(9)) is unlocked


def test_unlock_records_reward_event(session, record):
    _applications(session, record, 1, 1)

    unlocked = badge_service.evaluate(session, user(1), now=day(2))
    session.commit()

    assert [badge.badge_id for badge in unlocked] == ["first_application"]
    row = _row(session, 1, "first_application")
    assert row.status == BadgeStatus.UNLOCKED
    assert row.unlocked_at == day(2)

    reward = session.execute(
        select(Event).where(Event.idempotency_key == f"badge:{user(1)}:first_application")
    ).scalar_one()
    assert reward.event_type == EventType.ACHIEVEMENT
    assert reward.reward_value == 50
    assert reward.event_metadata["badge_id"] == "first_application"


def test_progress_is_tracked_below_threshold(session, record):
    _applications(session, record, 1, 3)
    badge_service.evaluate(session, user(1), now=day(2))
    session.commit()

    row = _row(session, 1, "ten_applications")
    assert row.status == BadgeStatus.IN_PROGRESS
    assert row.progress_value == 3
    assert row.unlocked_at is None
    assert _row(session, 1, "first_placement").status == BadgeStatus.LOCKED


def test_unlocked_at_never_changes(session, record):
    _applications(session, record, 1, 1)
    badge_service.evaluate(session, user(1), now=day(2))
    session.commit()

    _applications(session, record, 1, 4)
    assert badge_service.evaluate(session, user(1), now=day(5)) == []
    session.commit()

    row = _row(session, 1, "first_application")
    assert row.unlocked_at == day(2)
    assert row.progress_value == 1


def test_stale_score_aborts_without_writes(session, session_factory, record, monkeypatch):
    _applications(session, record, 1, 1)
    real_get_score = badge_service.get_score

    def racing_get_score(db, user_id):
        snapshot = real_get_score(db, user_id)
        racer = session_factory()
        try:
            event_service.record(racer, user_id=user_id, event_type="APPLICATION", source="DIRECT")
            aggregation_service.apply_pending(racer, user_id)
            racer.commit()
        finally:
            racer.close()
        return snapshot

    monkeypatch.setattr(badge_service, "get_score", racing_get_score)

    with pytest.raises(BadgeEvaluationStale) as excinfo:
        badge_service.evaluate(session, user(1), now=day(2))
    assert excinfo.value.status_code == 409

    session.rollback()
    assert session.execute(select(BadgeProgress)).scalars().all() == []


@pytest.mark.parametrize("lose_insert_race", [False, True])
def test_reward_paid_elsewhere_reports_no_unlock(session, session_factory, record, monkeypatch, lose_insert_race):
    _applications(session, record, 1, 1)
    key = f"badge:{user(1)}:first_application"
    other = session_factory()
    try:
        event_service.record(
            other, user_id=user(1), event_type="ACHIEVEMENT", source="DIRECT", reward_value=50, idempotency_key=key
        )
        other.commit()
    finally:
        other.close()

    if lose_insert_race:
        real_lookup = event_service._existing_event_id
        lookups = []

        def miss_first_lookup(db, idempotency_key):
            lookups.append(idempotency_key)
            return None if len(lookups) == 1 else real_lookup(db, idempotency_key)

        monkeypatch.setattr(event_service, "_existing_event_id", miss_first_lookup)

    with pytest.raises(BadgeEvaluationStale) as excinfo:
        badge_service.evaluate(session, user(1), now=day(2))
    assert excinfo.value.status_code == 409

    session.rollback()
    assert session.execute(select(BadgeProgress)).scalars().all() == []
    rewards = session.execute(select(Event).where(Event.idempotency_key == key)).scalars().all()
    assert len(rewards) == 1


def test_retry_after_stale_evaluation(session, record, monkeypatch):
    _applications(session, record, 1, 1)
    real_evaluate = badge_service.evaluate
    calls = []

    def flaky(db, user_id, *, now=None):
        calls.append(user_id)
        if len(calls) == 1:
            raise BadgeEvaluationStale("cursor moved")
        return real_evaluate(db, user_id, now=now)

    monkeypatch.setattr(badge_service, "evaluate", flaky)

    unlocked = badge_service.evaluate_with_retry(session, user(1), now=day(2), max_attempts=2)

    assert len(calls) == 2
    assert [badge.badge_id for badge in unlocked] == ["first_application"]


def test_streak_badge_uses_best_run(session, record):
    for d in range(1, 8):
        record(user(1), occurred_at=day(d))
    record(user(1), occurred_at=day(20))
    aggregation_service.apply_pending(session, user(1))
    session.commit()

    unlocked = badge_service.evaluate(session, user(1), now=day(21))

    assert "streak_7" in [badge.badge_id for badge in unlocked]


def test_get_badges_lists_earned_first_then_rarity(session, record):
    _applications(session, record, 1, 1)
    badge_service.evaluate(session, user(1), now=day(2))
    session.commit()

    views = badge_service.get_badges(session, user(1))

    assert len(views) == len(DEFAULT_CATALOGUE)
    assert views[0].definition.badge_id == "first_application"
    assert views[0].earned
    assert views[1].definition.rarity == "legendary"
    assert [view.definition.rarity for view in views[2:4]] == ["epic", "epic"]


def test_get_badges_filters_by_category(session):
    views = badge_service.get_badges(session, user(1), category="streak")

    assert [view.definition.badge_id for view in views] == ["streak_100", "streak_30", "streak_7"]
    assert all(view.status == BadgeStatus.LOCKED for view in views)


def test_load_catalogue_from_json(tmp_path):
    path = tmp_path / "badges.json"
    path.write_text(
        json.dumps(
            [
                {"badge_id": "first_offer", "category": "placement", "rarity": "rare", "metric": "placements", "threshold": 1},
                {"badge_id": "grinder", "name": "Grinder", "category": "xp", "rarity": "common", "metric": "xp", "threshold": 500, "xp_reward": 25},
            ]
        ),
        encoding="utf-8",
    )

    badges = load_catalogue(str(path))

    assert [badge.badge_id for badge in badges] == ["first_offer", "grinder"]
    assert badges[0].name == "first_offer"
    assert badges[1].metric == Metric.XP
    assert badges[1].xp_reward == 25


def test_load_catalogue_rejects_duplicates(tmp_path):
    item = {"badge_id": "dup", "category": "xp", "rarity": "common", "metric": "xp", "threshold": 1}
    path = tmp_path / "badges.json"
    path.write_text(json.dumps([item, item]), encoding="utf-8")

    with pytest.raises(ValueError):
        load_catalogue(str(path))


def test_default_catalogue_without_path():
    assert load_catalogue(None) is DEFAULT_CATALOGUE
