import pytest
from sqlalchemy import func

from polihub.core.identity import generate_identity
from polihub.db.models.trust_score_event import TrustScoreEvent
from polihub.services import trust
from polihub.services.trust import Standing, TrustConfig

CONFIG = TrustConfig()


def _event_sum(db, user_id: int) -> int:
    return int(
        db.query(func.coalesce(func.sum(TrustScoreEvent.applied_delta), 0))
        .filter(TrustScoreEvent.user_id == user_id)
        .scalar()
    )


def test_new_identity_gets_baseline_event(db_session):
    user = generate_identity(db_session, trust_config=CONFIG)
    events = trust.list_events(db_session, user.id)
    assert user.trust_score == 50
    assert user.standing == "normal"
    assert [(e.cause, e.applied_delta) for e in events] == [("baseline", 50)]


def test_score_is_clamped_and_equals_sum_of_applied_deltas(db_session):
    user = generate_identity(db_session, trust_config=CONFIG)
    for delta in (40, 40, -500, 7, -3, 200):
        trust.adjust(db_session, user.id, delta, trust.CAUSE_MANUAL, config=CONFIG)
        db_session.commit()
        db_session.refresh(user)
        assert CONFIG.min_score <= user.trust_score <= CONFIG.max_score
        assert user.trust_score == _event_sum(db_session, user.id)
    assert user.trust_score == 100


def test_clamped_event_records_requested_and_applied(db_session):
    user = generate_identity(db_session, trust_config=CONFIG)
    result = trust.adjust(db_session, user.id, 80, trust.CAUSE_MANUAL, config=CONFIG)
    assert result.event.requested_delta == 80
    assert result.event.applied_delta == 50
    assert result.score == 100


def test_adjust_is_idempotent_per_cause_ref(db_session):
    user = generate_identity(db_session, trust_config=CONFIG)
    first = trust.adjust(db_session, user.id, -10, trust.CAUSE_FLAG_UPHELD, cause_ref="flag:1", config=CONFIG)
    db_session.commit()
    second = trust.adjust(db_session, user.id, -10, trust.CAUSE_FLAG_UPHELD, cause_ref="flag:1", config=CONFIG)
    db_session.commit()
    db_session.refresh(user)

    assert first.applied is True
    assert second.applied is False
    assert second.event.id == first.event.id
    assert user.trust_score == 40


def test_adjust_unknown_user_raises(db_session):
    with pytest.raises(LookupError):
        trust.adjust(db_session, 999, 5, trust.CAUSE_MANUAL, config=CONFIG)


@pytest.mark.parametrize(
    ("score", "violations", "expected"),
    [
        (50, 0, Standing.NORMAL),
        (30, 0, Standing.NORMAL),
        (29, 0, Standing.THROTTLED),
        (10, 0, Standing.THROTTLED),
        (9, 0, Standing.BLOCKED),
        (90, 3, Standing.THROTTLED),
        (90, 10, Standing.BLOCKED),
    ],
)
def test_standing_for_thresholds(score, violations, expected):
    assert trust.standing_for(score, violations, CONFIG) == expected


def test_downgrade_is_immediate_and_recovery_is_one_step(db_session):
    user = generate_identity(db_session, trust_config=CONFIG)

    drop = trust.adjust(db_session, user.id, -45, trust.CAUSE_MANUAL, config=CONFIG)
    assert drop.score == 5
    assert drop.standing == Standing.BLOCKED

    first = trust.adjust(db_session, user.id, 60, trust.CAUSE_MANUAL, config=CONFIG)
    assert first.score == 65
    assert first.standing == Standing.THROTTLED

    second = trust.adjust(db_session, user.id, 1, trust.CAUSE_MANUAL, config=CONFIG)
    assert second.standing == Standing.NORMAL


def test_rate_limit_violations_throttle_then_block(db_session):
    user = generate_identity(db_session, trust_config=CONFIG)
    standings = [trust.record_rate_limit_violation(db_session, user.id, CONFIG) for _ in range(10)]
    assert standings[1] == Standing.NORMAL
    assert standings[2] == Standing.THROTTLED
    assert standings[9] == Standing.BLOCKED


def test_moderator_set_standing_moves_any_distance_and_clears_violations(db_session):
    user = generate_identity(db_session, trust_config=CONFIG)
    for _ in range(10):
        trust.record_rate_limit_violation(db_session, user.id, CONFIG)
    db_session.commit()

    updated = trust.set_standing(db_session, user.id, Standing.NORMAL, actor_staff_id=None, reason="appeal")
    db_session.commit()
    assert updated.standing == "normal"
    assert updated.violation_count == 0
    assert trust.get_posting_eligibility(updated) == Standing.NORMAL


def test_config_validation_rejects_inverted_thresholds():
    with pytest.raises(ValueError):
        TrustConfig(low_threshold=5, block_threshold=10).validate()
    with pytest.raises(ValueError):
        TrustConfig(baseline=150).validate()


def test_penalty_does_not_lift_a_moderator_block(db_session):
    user = generate_identity(db_session, trust_config=CONFIG)
    trust.set_standing(db_session, user.id, Standing.BLOCKED, reason="spam")
    db_session.flush()

    penalty = trust.adjust(db_session, user.id, -10, trust.CAUSE_FLAG_UPHELD, cause_ref="flag:1", config=CONFIG)
    assert penalty.score == 40
    assert penalty.standing == Standing.BLOCKED


def test_rate_limit_violation_does_not_lift_a_moderator_block(db_session):
    user = generate_identity(db_session, trust_config=CONFIG)
    trust.set_standing(db_session, user.id, Standing.BLOCKED, reason="spam")
    db_session.flush()

    assert trust.record_rate_limit_violation(db_session, user.id, CONFIG) == Standing.BLOCKED


def test_score_recovery_lifts_a_block_one_level(db_session):
    user = generate_identity(db_session, trust_config=CONFIG)
    trust.set_standing(db_session, user.id, Standing.BLOCKED, reason="spam")
    db_session.flush()

    recovery = trust.adjust(db_session, user.id, 1, trust.CAUSE_CLEAN_POST, cause_ref="post:1", config=CONFIG)
    assert recovery.standing == Standing.THROTTLED


def test_next_standing_holds_position_when_upgrade_not_allowed():
    assert trust.next_standing(Standing.BLOCKED, Standing.NORMAL, allow_upgrade=False) == Standing.BLOCKED
    assert trust.next_standing(Standing.NORMAL, Standing.THROTTLED, allow_upgrade=False) == Standing.THROTTLED
    assert trust.next_standing(Standing.BLOCKED, Standing.NORMAL) == Standing.THROTTLED
