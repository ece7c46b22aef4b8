"""Trust score ledger and posting standing.

A user's ``trust_score`` is the running sum of the ``applied_delta`` of their
trust events, the first of which is the baseline written when the identity is
created. Every change goes through :func:`adjust` so the aggregate and the
ledger never diverge.
"""

import logging
from dataclasses import dataclass
from enum import Enum

from sqlalchemy.orm import Session

from polihub.core.metrics import increment_counter
from polihub.core.utils import env_int, utc_now_naive
from polihub.db.models.trust_score_event import TrustScoreEvent
from polihub.db.models.user import User

logger = logging.getLogger(__name__)


class Standing(str, Enum):
    NORMAL = "normal"
    THROTTLED = "throttled"
    BLOCKED = "blocked"


_STANDING_RANK = {Standing.NORMAL: 0, Standing.THROTTLED: 1, Standing.BLOCKED: 2}
_RANK_STANDING = {rank: standing for standing, rank in _STANDING_RANK.items()}

CAUSE_BASELINE = "baseline"
CAUSE_FLAG_UPHELD = "flag_upheld"
CAUSE_FLAG_CLEARED = "flag_cleared"
CAUSE_CLEAN_POST = "clean_post"
CAUSE_AUTO_MODERATION = "auto_moderation"
CAUSE_MANUAL = "manual"


@dataclass(frozen=True)
class TrustConfig:
    baseline: int = 50
    min_score: int = 0
    max_score: int = 100
    low_threshold: int = 30
    block_threshold: int = 10
    high_threshold: int = 80
    flag_upheld_penalty: int = 10
    flag_cleared_restore: int = 5
    clean_post_reward: int = 1
    throttle_after_violations: int = 3
    block_after_violations: int = 10

    @classmethod
    def from_env(cls) -> "TrustConfig":
        config = cls(
            baseline=env_int("TRUST_BASELINE", 50),
            min_score=env_int("TRUST_MIN", 0),
            max_score=env_int("TRUST_MAX", 100),
            low_threshold=env_int("TRUST_LOW_THRESHOLD", 30),
            block_threshold=env_int("TRUST_BLOCK_THRESHOLD", 10),
            high_threshold=env_int("TRUST_HIGH_THRESHOLD", 80),
            flag_upheld_penalty=env_int("TRUST_FLAG_UPHELD_PENALTY", 10),
            flag_cleared_restore=env_int("TRUST_FLAG_CLEARED_RESTORE", 5),
            clean_post_reward=env_int("TRUST_CLEAN_POST_REWARD", 1),
            throttle_after_violations=env_int("TRUST_THROTTLE_AFTER_VIOLATIONS", 3),
            block_after_violations=env_int("TRUST_BLOCK_AFTER_VIOLATIONS", 10),
        )
        config.validate()
        return config

    def validate(self) -> None:
        if not self.min_score <= self.block_threshold <= self.low_threshold <= self.max_score:
            raise ValueError("Trust thresholds must satisfy min <= block <= low <= max")
        if not self.min_score <= self.baseline <= self.max_score:
            raise ValueError("Trust baseline must lie within [min, max]")

    def clamp(self, score: int) -> int:
        return max(self.min_score, min(self.max_score, score))


@dataclass
class TrustAdjustment:
    event: TrustScoreEvent
    score: int
    standing: Standing
    applied: bool


def get_trust_config() -> TrustConfig:
    return TrustConfig.from_env()


def standing_for(score: int, violations: int, config: TrustConfig) -> Standing:
    if score < config.block_threshold or violations >= config.block_after_violations:
        return Standing.BLOCKED
    if score < config.low_threshold or violations >= config.throttle_after_violations:
        return Standing.THROTTLED
    return Standing.NORMAL


def next_standing(current: Standing, target: Standing, *, allow_upgrade: bool = True) -> Standing:
    """Downgrades apply at once; upgrades move one level, and only when allowed."""
    current_rank = _STANDING_RANK[current]
    target_rank = _STANDING_RANK[target]
    if target_rank >= current_rank:
        return target
    if not allow_upgrade:
        return current
    return _RANK_STANDING[current_rank - 1]


def _reevaluate(user: User, config: TrustConfig, *, allow_upgrade: bool) -> Standing:
    current = Standing(user.standing or Standing.NORMAL.value)
    target = standing_for(int(user.trust_score or 0), int(user.violation_count or 0), config)
    updated = next_standing(current, target, allow_upgrade=allow_upgrade)
    if updated != current:
        logger.info(
            "standing_changed user_id=%s from=%s to=%s score=%s violations=%s",
            user.id,
            current.value,
            updated.value,
            user.trust_score,
            user.violation_count,
        )
        increment_counter("trust_standing_changes_total", to=updated.value)
    user.standing = updated.value
    return updated


def _lock_user(db: Session, user_id: int) -> User:
    user = db.query(User).filter(User.id == user_id).with_for_update().populate_existing().first()
    if user is None:
        raise LookupError(f"User {user_id} not found")
    return user


def adjust(
    db: Session,
    user_id: int,
    delta: int,
    cause: str,
    *,
    cause_ref: str | None = None,
    reason: str | None = None,
    actor_staff_id: int | None = None,
    config: TrustConfig | None = None,
) -> TrustAdjustment:
    """Apply a trust delta to a user inside the caller's transaction.

    The user row is locked for the read-modify-write. The result is clamped to
    ``[min_score, max_score]`` and the event records both the requested and the
    applied delta. A repeated (cause, cause_ref) pair returns the recorded
    event without applying it again. The caller commits.
    """
    config = config or get_trust_config()
    user = _lock_user(db, user_id)

    if cause_ref is not None:
        existing = (
            db.query(TrustScoreEvent)
            .filter(
                TrustScoreEvent.user_id == user_id,
                TrustScoreEvent.cause == cause,
                TrustScoreEvent.cause_ref == cause_ref,
            )
            .first()
        )
        if existing is not None:
            return TrustAdjustment(
                event=existing,
                score=int(user.trust_score),
                standing=Standing(user.standing),
                applied=False,
            )

    before = int(user.trust_score or 0)
    after = config.clamp(before + int(delta))
    user.trust_score = after
    # only score recovery can lift a standing
    standing = _reevaluate(user, config, allow_upgrade=after > before)

    event = TrustScoreEvent(
        user_id=user_id,
        cause=cause,
        cause_ref=cause_ref,
        requested_delta=int(delta),
        applied_delta=after - before,
        score_after=after,
        reason=(reason or "")[:255] or None,
        actor_staff_id=actor_staff_id,
        created_at=utc_now_naive(),
    )
    db.add(event)
    db.flush()

    increment_counter("trust_adjustments_total", cause=cause)
    logger.info(
        "trust_adjusted user_id=%s cause=%s requested=%s applied=%s score=%s",
        user_id,
        cause,
        delta,
        after - before,
        after,
    )
    return TrustAdjustment(event=event, score=after, standing=standing, applied=True)


def initialize_score(db: Session, user: User, config: TrustConfig | None = None) -> TrustAdjustment:
    config = config or get_trust_config()
    user.trust_score = 0
    user.standing = Standing.NORMAL.value
    db.flush()
    return adjust(db, user.id, config.baseline, CAUSE_BASELINE, cause_ref="created", config=config)


def get_posting_eligibility(user: User) -> Standing:
    return Standing(user.standing or Standing.NORMAL.value)


def record_rate_limit_violation(db: Session, user_id: int, config: TrustConfig | None = None) -> Standing:
    config = config or get_trust_config()
    user = _lock_user(db, user_id)
    user.violation_count = int(user.violation_count or 0) + 1
    standing = _reevaluate(user, config, allow_upgrade=False)
    db.flush()
    logger.info("rate_limit_violation user_id=%s violations=%s standing=%s", user_id, user.violation_count, standing.value)
    return standing


def set_standing(
    db: Session,
    user_id: int,
    standing: Standing,
    *,
    actor_staff_id: int | None = None,
    reason: str | None = None,
) -> User:
    """Moderator override; restoring to normal also clears rate-limit violations."""
    user = _lock_user(db, user_id)
    previous = user.standing
    user.standing = standing.value
    if standing == Standing.NORMAL:
        user.violation_count = 0
    db.flush()
    increment_counter("trust_standing_changes_total", to=standing.value)
    logger.info(
        "standing_set user_id=%s from=%s to=%s actor_staff_id=%s reason=%s",
        user_id,
        previous,
        standing.value,
        actor_staff_id,
        reason,
    )
    return user


def list_events(db: Session, user_id: int, limit: int = 100) -> list[TrustScoreEvent]:
    return (
        db.query(TrustScoreEvent)
        .filter(TrustScoreEvent.user_id == user_id)
        .order_by(TrustScoreEvent.id.asc())
        .limit(limit)
        .all()
    )


def serialize_event(event: TrustScoreEvent) -> dict:
    return {
        "id": event.id,
        "cause": event.cause,
        "cause_ref": event.cause_ref,
        "requested_delta": event.requested_delta,
        "applied_delta": event.applied_delta,
        "score_after": event.score_after,
        "reason": event.reason,
        "actor_staff_id": event.actor_staff_id,
        "created_at": event.created_at.isoformat() if event.created_at else None,
    }
