from datetime import date

import pytest

from helpers import day, user
from layersrank.models import Event, ScoreState
from layersrank.services import aggregation_service
from layersrank.services.aggregation_service import AggregationConflict, ScoreSnapshot


def _race_once(monkeypatch, session_factory):
    """Let a second session aggregate and commit while the first is mid-call."""

    original = aggregation_service.read_since
    fired = []

    def racing(session, user_id, cursor):
        if not fired:
            fired.append(True)
            racer = session_factory()
            try:
                aggregation_service.apply_pending(racer, user_id)
                racer.commit()
            finally:
                racer.close()
        return original(session, user_id, cursor)

    monkeypatch.setattr(aggregation_service, "read_since", racing)
    return fired


def test_rewards_fold_into_xp(session, record):
    for reward in (10, 5, 20):
        record(user(1), reward_value=reward)

    state = aggregation_service.apply_pending(session, user(1))
    session.commit()

    assert state.xp == 35
    assert state.events_applied == 3
    assert session.get(ScoreState, user(1)).xp == 35


def test_batches_match_single_pass(session, record):
    record(user(1), reward_value=10, occurred_at=day(1))
    record(user(1), reward_value=5, occurred_at=day(2))
    aggregation_service.apply_pending(session, user(1))
    session.commit()

    record(user(1), reward_value=20, occurred_at=day(3))
    incremental = aggregation_service.apply_pending(session, user(1))
    session.commit()

    assert incremental == aggregation_service.rebuild(session, user(1), persist=False)


def test_apply_pending_is_idempotent(session, record):
    record(user(1), reward_value=10)
    first = aggregation_service.apply_pending(session, user(1))
    session.commit()
    second = aggregation_service.apply_pending(session, user(1))

    assert first == second
    assert second.xp == 10


def test_user_without_events_has_empty_score(session):
    state = aggregation_service.apply_pending(session, user(9))

    assert state == ScoreSnapshot(user_id=user(9))
    assert session.get(ScoreState, user(9)) is None


def test_consecutive_days_build_streak(session, record):
    for d in (1, 2, 3):
        record(user(1), occurred_at=day(d))

    state = aggregation_service.apply_pending(session, user(1))
    assert state.streak_count == 3
    assert state.longest_streak == 3
    assert state.streak_last_date == date(2025, 1, 3)


def test_gap_resets_streak(session, record):
    record(user(1), occurred_at=day(1))
    record(user(1), occurred_at=day(4))

    state = aggregation_service.apply_pending(session, user(1))
    assert state.streak_count == 1
    assert state.streak_last_date == date(2025, 1, 4)


def test_same_day_events_count_once(session, record):
    record(user(1), occurred_at=day(1, hour=8))
    record(user(1), occurred_at=day(1, hour=20))
    record(user(1), occurred_at=day(2, hour=1))

    state = aggregation_service.apply_pending(session, user(1))
    assert state.streak_count == 2


def test_backdated_event_joins_streak(session, record):
    record(user(1), occurred_at=day(5))
    aggregation_service.apply_pending(session, user(1))
    session.commit()

    record(user(1), reward_value=3, occurred_at=day(4))
    state = aggregation_service.apply_pending(session, user(1))

    assert state.streak_count == 2
    assert state.streak_last_date == date(2025, 1, 5)
    assert state.xp == 3
    assert state.last_occurred_at == day(5)


def test_backdated_streak_days_one_at_a_time(session, record):
    for d in (3, 2, 1):
        record(user(1), occurred_at=day(d))
        aggregation_service.apply_pending(session, user(1))
        session.commit()

    state = aggregation_service.get_score(session, user(1))
    assert state.streak_count == 3
    assert state == aggregation_service.rebuild(session, user(1), persist=False)


def test_backdated_negative_reward_matches_single_batch(session, record):
    record(user(1), reward_value=10, occurred_at=day(2))
    aggregation_service.apply_pending(session, user(1))
    session.commit()
    record(user(1), reward_value=-20, occurred_at=day(1))
    one_by_one = aggregation_service.apply_pending(session, user(1))
    session.commit()

    record(user(2), reward_value=10, occurred_at=day(2))
    record(user(2), reward_value=-20, occurred_at=day(1))
    batched = aggregation_service.apply_pending(session, user(2))
    session.commit()

    # -20 clamps at zero first, then +10.
    assert one_by_one.xp == batched.xp == 10
    assert one_by_one.events_applied == 2
    assert one_by_one == aggregation_service.rebuild(session, user(1), persist=False)


def test_backdated_refold_conflicts_like_append(session, session_factory, record, monkeypatch):
    record(user(1), reward_value=10, occurred_at=day(2))
    aggregation_service.apply_pending(session, user(1))
    session.commit()
    record(user(1), reward_value=-20, occurred_at=day(1))

    _race_once(monkeypatch, session_factory)
    with pytest.raises(AggregationConflict):
        aggregation_service.apply_pending(session, user(1))
    session.rollback()

    assert aggregation_service.get_score(session, user(1)).xp == 10


def test_non_qualifying_events_do_not_extend_streak(session, record):
    record(user(1), occurred_at=day(1))
    record(user(1), event_type="SYSTEM", occurred_at=day(2))

    state = aggregation_service.apply_pending(session, user(1))
    assert state.streak_count == 1
    assert state.streak_last_date == date(2025, 1, 1)


def test_xp_never_goes_negative(session, record):
    record(user(1), reward_value=5, occurred_at=day(1))
    record(user(1), reward_value=-20, occurred_at=day(2))
    record(user(1), reward_value=4, occurred_at=day(3))

    state = aggregation_service.apply_pending(session, user(1))
    assert state.xp == 4


def test_counts_placements_and_applications(session, record):
    record(user(1), event_type="APPLICATION")
    record(user(1), event_type="APPLICATION")
    record(user(1), event_type="PLACEMENT")

    state = aggregation_service.apply_pending(session, user(1))
    assert state.applications_count == 2
    assert state.placements_count == 1


def test_streak_on_reads_as_zero_after_missed_day():
    snapshot = ScoreSnapshot(user_id=user(1), streak_count=4, streak_last_date=date(2025, 1, 10))

    assert snapshot.streak_on(date(2025, 1, 10)) == 4
    assert snapshot.streak_on(date(2025, 1, 11)) == 4
    assert snapshot.streak_on(date(2025, 1, 12)) == 0


def test_streak_day_follows_configured_timezone(session, record):
    events = []
    for d, hour in ((1, 20), (2, 2)):
        events.append(session.get(Event, record(user(1), occurred_at=day(d, hour=hour))))

    utc = aggregation_service.fold(
        ScoreSnapshot(user_id=user(1)), events, tz_name="UTC", qualifying_types=["OPPORTUNITY"]
    )
    kolkata = aggregation_service.fold(
        ScoreSnapshot(user_id=user(1)), events, tz_name="Asia/Kolkata", qualifying_types=["OPPORTUNITY"]
    )

    assert utc.streak_count == 2
    # 20:00 UTC on the 1st and 02:00 UTC on the 2nd are both the 2nd in Kolkata.
    assert kolkata.streak_count == 1


def test_rebuild_repairs_stored_state(session, record):
    record(user(1), reward_value=10, occurred_at=day(1))
    record(user(1), reward_value=7, occurred_at=day(2))
    expected = aggregation_service.apply_pending(session, user(1))
    session.commit()

    row = session.get(ScoreState, user(1))
    row.xp = 999
    session.commit()

    rebuilt = aggregation_service.rebuild(session, user(1))
    session.commit()

    assert rebuilt == expected
    assert aggregation_service.get_score(session, user(1)).xp == 17


def test_users_with_pending_events(session, record):
    record(user(1), reward_value=1)
    record(user(2), reward_value=1)
    aggregation_service.apply_pending(session, user(1))
    session.commit()

    assert list(aggregation_service.users_with_pending_events(session)) == [user(2)]

    record(user(1), reward_value=1)
    assert list(aggregation_service.users_with_pending_events(session)) == [user(1), user(2)]


def test_concurrent_first_aggregation_conflicts(session, session_factory, record, monkeypatch):
    record(user(1), reward_value=10)
    _race_once(monkeypatch, session_factory)

    with pytest.raises(AggregationConflict) as excinfo:
        aggregation_service.apply_pending(session, user(1))
    assert excinfo.value.status_code == 409

    session.rollback()
    assert aggregation_service.get_score(session, user(1)).xp == 10


def test_concurrent_update_conflicts_then_retry_succeeds(session, session_factory, record, monkeypatch):
    record(user(1), reward_value=10)
    aggregation_service.apply_pending(session, user(1))
    session.commit()
    record(user(1), reward_value=5)

    _race_once(monkeypatch, session_factory)
    with pytest.raises(AggregationConflict):
        aggregation_service.apply_pending(session, user(1))
    session.rollback()

    state = aggregation_service.apply_pending_with_retry(session, user(1), max_attempts=2)
    session.commit()

    assert state.xp == 15
    assert state.events_applied == 2


def test_retry_gives_up_after_max_attempts(session, record, monkeypatch):
    record(user(1), reward_value=10)

    def always_conflict(session, user_id):
        raise AggregationConflict("cursor moved")

    monkeypatch.setattr(aggregation_service, "apply_pending", always_conflict)
    with pytest.raises(AggregationConflict):
        aggregation_service.apply_pending_with_retry(session, user(1), max_attempts=3)
