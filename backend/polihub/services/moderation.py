import logging
import os
import re
from dataclasses import dataclass, field
from enum import Enum

from sqlalchemy.orm import Session

from polihub.core.errors import ContentRejected, InputValidationError
from polihub.core.metrics import increment_counter
from polihub.core.permissions import community_permission_set, has_permission
from polihub.core.utils import env_csv, env_int, utc_now_naive
from polihub.db.models.moderation_flag import ModerationFlag
from polihub.db.models.post import Post
from polihub.db.models.staff import Staff
from polihub.db.models.user import User
from polihub.services import trust

logger = logging.getLogger(__name__)

DEFAULT_BANNED_TERMS = (
    "kill",
    "murder",
    "rape",
    "terrorist",
    "genocide",
    "madoadoa",
    "kwekwe",
    "fuck",
    "shit",
    "bitch",
)

_LEET = str.maketrans({"0": "o", "1": "i", "3": "e", "4": "a", "5": "s", "7": "t", "@": "a", "$": "s"})
_LINK_RE = re.compile(r"(https?://|www\.)\S+", re.IGNORECASE)
_WORD_RE = re.compile(r"[a-z]+")


class Decision(str, Enum):
    ALLOW = "allow"
    HOLD = "hold"
    REJECT = "reject"


class FlagStatus(str, Enum):
    PENDING = "pending"
    CLEARED = "cleared"
    UPHELD = "upheld"


POST_PUBLISHED = "published"
POST_HELD = "held"
POST_REMOVED = "removed"


@dataclass(frozen=True)
class ModerationConfig:
    banned_terms: frozenset[str] = frozenset(DEFAULT_BANNED_TERMS)
    penalty_per_severity: int = 5
    hold_links: int = 3
    reject_links: int = 6
    repeat_run: int = 8
    max_length: int = 5000
    min_length: int = 2
    community_flag_weight_cap: int = 60
    community_flag_hide_threshold: int = 150

    @classmethod
    def from_env(cls) -> "ModerationConfig":
        extra = {term.lower() for term in env_csv("MODERATION_BANNED_TERMS")}
        if os.getenv("MODERATION_REPLACE_DEFAULT_TERMS", "false").lower() == "true":
            terms = frozenset(extra)
        else:
            terms = frozenset(DEFAULT_BANNED_TERMS) | frozenset(extra)
        return cls(
            banned_terms=terms,
            penalty_per_severity=env_int("MODERATION_PENALTY_PER_SEVERITY", 5),
            hold_links=env_int("MODERATION_HOLD_LINKS", 3),
            reject_links=env_int("MODERATION_REJECT_LINKS", 6),
            repeat_run=env_int("MODERATION_REPEAT_RUN", 8),
            max_length=env_int("MODERATION_MAX_LENGTH", 5000),
            min_length=env_int("MODERATION_MIN_LENGTH", 2),
            community_flag_weight_cap=env_int("COMMUNITY_FLAG_WEIGHT_CAP", 60),
            community_flag_hide_threshold=env_int("COMMUNITY_FLAG_HIDE_THRESHOLD", 150),
        )


@dataclass
class ScreenResult:
    decision: Decision
    severity: int = 0
    reasons: list[str] = field(default_factory=list)


def get_moderation_config() -> ModerationConfig:
    return ModerationConfig.from_env()


def _normalize(text: str) -> str:
    return text.lower().translate(_LEET)


def _longest_run(text: str) -> int:
    longest = 0
    current = 0
    previous = None
    for ch in text:
        if ch.isspace():
            previous, current = None, 0
            continue
        current = current + 1 if ch == previous else 1
        previous = ch
        longest = max(longest, current)
    return longest


def screen(text: str, config: ModerationConfig | None = None) -> ScreenResult:
    """Deterministic local content screen; performs no I/O."""
    config = config or get_moderation_config()
    content = (text or "").strip()
    reasons: list[str] = []
    severity = 0

    if len(content) < config.min_length:
        reasons.append("too_short")
        severity += 2
    if len(content) > config.max_length:
        reasons.append("too_long")
        severity += 2

    words = set(_WORD_RE.findall(_normalize(content)))
    hits = sorted(words & config.banned_terms)
    if hits:
        reasons.append("banned_term")
        severity += 2

    links = len(_LINK_RE.findall(content))
    if links > config.reject_links:
        reasons.append("excessive_links")
        severity += 2
    elif links > config.hold_links:
        reasons.append("many_links")
        severity += 1

    if config.repeat_run > 0 and _longest_run(content) >= config.repeat_run:
        reasons.append("repeated_characters")
        severity += 1

    if severity >= 2:
        decision = Decision.REJECT
    elif severity == 1:
        decision = Decision.HOLD
    else:
        decision = Decision.ALLOW
    return ScreenResult(decision=decision, severity=severity, reasons=reasons)


@dataclass
class SubmissionResult:
    post: Post
    decision: Decision
    flag: ModerationFlag | None
    trust_score: int


def _excerpt(text: str) -> str:
    return (text or "").strip()[:280]


def ensure_can_post(user: User) -> None:
    if trust.get_posting_eligibility(user) == trust.Standing.BLOCKED:
        increment_counter("moderation_screen_total", decision="blocked_author")
        logger.info("submission_blocked user_id=%s", user.id)
        raise ContentRejected(["posting_blocked"])


def _fast_tracked(user: User, trust_config: trust.TrustConfig) -> bool:
    permissions = community_permission_set(user.standing, int(user.trust_score or 0), trust_config.high_threshold)
    return has_permission(permissions, "auto_approve_content")


def submit_content(
    db: Session,
    user: User,
    *,
    body: str,
    kind: str = "post",
    title: str | None = None,
    county: str | None = None,
    parent_id: int | None = None,
    trust_config: trust.TrustConfig | None = None,
    config: ModerationConfig | None = None,
) -> SubmissionResult:
    config = config or get_moderation_config()
    trust_config = trust_config or trust.get_trust_config()

    if kind not in {"post", "comment"}:
        raise InputValidationError("kind must be 'post' or 'comment'")
    if kind == "comment":
        parent = db.get(Post, parent_id) if parent_id is not None else None
        if parent is None or parent.status != POST_PUBLISHED:
            raise InputValidationError("Comment parent not found")
    else:
        parent_id = None

    ensure_can_post(user)

    screened_text = f"{title}\n{body}" if title else body
    result = screen(screened_text, config)
    increment_counter("moderation_screen_total", decision=result.decision.value)
    now = utc_now_naive()
    fast_track = result.decision == Decision.HOLD and _fast_tracked(user, trust_config)

    if result.decision == Decision.REJECT:
        flag = ModerationFlag(
            post_id=None,
            author_id=user.id,
            source="auto",
            reason=result.reasons[0],
            reasons=result.reasons,
            severity=result.severity,
            content_excerpt=_excerpt(body),
            status=FlagStatus.UPHELD.value,
            resolved_at=now,
            created_at=now,
        )
        db.add(flag)
        db.flush()
        adjustment = trust.adjust(
            db,
            user.id,
            -result.severity * config.penalty_per_severity,
            trust.CAUSE_AUTO_MODERATION,
            cause_ref=f"flag:{flag.id}",
            reason=",".join(result.reasons),
            config=trust_config,
        )
        flag.trust_delta = adjustment.event.applied_delta
        db.commit()
        logger.info("submission_rejected user_id=%s flag_id=%s reasons=%s", user.id, flag.id, result.reasons)
        raise ContentRejected(result.reasons, flag_id=flag.id)

    post = Post(
        author_id=user.id,
        kind=kind,
        parent_id=parent_id,
        title=title,
        body=body.strip(),
        county=county,
        status=POST_HELD if result.decision == Decision.HOLD and not fast_track else POST_PUBLISHED,
        community_flag_weight=0,
        created_at=now,
    )
    db.add(post)
    db.flush()

    flag = None
    if result.decision == Decision.HOLD:
        flag = ModerationFlag(
            post_id=post.id,
            author_id=user.id,
            source="auto",
            reason=result.reasons[0],
            reasons=result.reasons,
            severity=result.severity,
            content_excerpt=_excerpt(body),
            status=FlagStatus.PENDING.value,
            created_at=now,
        )
        db.add(flag)
        db.flush()
        adjustment = trust.adjust(
            db,
            user.id,
            -result.severity * config.penalty_per_severity,
            trust.CAUSE_AUTO_MODERATION,
            cause_ref=f"flag:{flag.id}",
            reason=",".join(result.reasons),
            config=trust_config,
        )
        flag.trust_delta = adjustment.event.applied_delta
    else:
        adjustment = trust.adjust(
            db,
            user.id,
            trust_config.clean_post_reward,
            trust.CAUSE_CLEAN_POST,
            cause_ref=f"post:{post.id}",
            config=trust_config,
        )

    user.last_active_at = now
    db.commit()
    db.refresh(post)
    logger.info("submission_accepted user_id=%s post_id=%s status=%s fast_track=%s", user.id, post.id, post.status, fast_track)
    return SubmissionResult(post=post, decision=result.decision, flag=flag, trust_score=adjustment.score)


def flag_content(
    db: Session,
    post: Post,
    flagger: User,
    *,
    reason: str,
    config: ModerationConfig | None = None,
) -> ModerationFlag:
    """Community flag weighted by the flagger's trust; enough weight hides the post."""
    config = config or get_moderation_config()
    if post.author_id == flagger.id:
        raise InputValidationError("You cannot flag your own content")
    if post.status == POST_REMOVED:
        raise InputValidationError("Content already removed")
    duplicate = (
        db.query(ModerationFlag)
        .filter(
            ModerationFlag.post_id == post.id,
            ModerationFlag.flagged_by_user_id == flagger.id,
        )
        .first()
    )
    if duplicate is not None:
        return duplicate

    weight = max(0, min(int(flagger.trust_score or 0), config.community_flag_weight_cap))
    post.community_flag_weight = int(post.community_flag_weight or 0) + weight
    now = utc_now_naive()
    flag = ModerationFlag(
        post_id=post.id,
        author_id=post.author_id,
        source="community",
        reason=(reason or "community_flag").strip()[:64] or "community_flag",
        reasons=["community_flag"],
        severity=0,
        content_excerpt=_excerpt(post.body),
        status=FlagStatus.PENDING.value,
        flagged_by_user_id=flagger.id,
        created_at=now,
    )
    db.add(flag)
    if post.status == POST_PUBLISHED and post.community_flag_weight > config.community_flag_hide_threshold:
        post.status = POST_HELD
        increment_counter("moderation_community_hidden_total")
        logger.info("post_hidden_by_community post_id=%s weight=%s", post.id, post.community_flag_weight)
    db.commit()
    db.refresh(flag)
    increment_counter("moderation_community_flags_total")
    return flag


def resolve_flag(
    db: Session,
    flag: ModerationFlag,
    outcome: FlagStatus,
    staff: Staff,
    *,
    note: str | None = None,
    trust_config: trust.TrustConfig | None = None,
) -> ModerationFlag:
    trust_config = trust_config or trust.get_trust_config()
    if outcome == FlagStatus.PENDING:
        raise InputValidationError("Outcome must be 'cleared' or 'upheld'")
    if flag.status != FlagStatus.PENDING.value:
        raise InputValidationError("Flag already resolved")

    post = db.get(Post, flag.post_id) if flag.post_id is not None else None
    if outcome == FlagStatus.UPHELD:
        delta = -trust_config.flag_upheld_penalty
        cause = trust.CAUSE_FLAG_UPHELD
        if post is not None:
            post.status = POST_REMOVED
    else:
        delta = trust_config.flag_cleared_restore
        cause = trust.CAUSE_FLAG_CLEARED
        if post is not None and post.status == POST_HELD:
            others_pending = (
                db.query(ModerationFlag)
                .filter(
                    ModerationFlag.post_id == post.id,
                    ModerationFlag.id != flag.id,
                    ModerationFlag.status == FlagStatus.PENDING.value,
                    ModerationFlag.source == "auto",
                )
                .count()
            )
            if not others_pending:
                post.status = POST_PUBLISHED

    adjustment = trust.adjust(
        db,
        flag.author_id,
        delta,
        cause,
        cause_ref=f"flag:{flag.id}",
        reason=note,
        actor_staff_id=staff.id,
        config=trust_config,
    )
    flag.status = outcome.value
    flag.trust_delta = int(flag.trust_delta or 0) + adjustment.event.applied_delta
    flag.resolved_by_staff_id = staff.id
    flag.resolved_at = utc_now_naive()
    db.commit()
    db.refresh(flag)
    increment_counter("moderation_flags_resolved_total", outcome=outcome.value)
    logger.info("flag_resolved flag_id=%s outcome=%s staff_id=%s", flag.id, outcome.value, staff.id)
    return flag


def list_flags(db: Session, status: str | None = None):
    query = db.query(ModerationFlag)
    if status and status != "all":
        query = query.filter(ModerationFlag.status == status)
    return query.order_by(ModerationFlag.id.desc())


def serialize_flag(flag: ModerationFlag) -> dict:
    return {
        "id": flag.id,
        "post_id": flag.post_id,
        "author_id": flag.author_id,
        "source": flag.source,
        "reason": flag.reason,
        "reasons": flag.reasons or [],
        "severity": flag.severity,
        "content_excerpt": flag.content_excerpt,
        "status": flag.status,
        "trust_delta": flag.trust_delta,
        "flagged_by_user_id": flag.flagged_by_user_id,
        "resolved_by_staff_id": flag.resolved_by_staff_id,
        "resolved_at": flag.resolved_at.isoformat() if flag.resolved_at else None,
        "created_at": flag.created_at.isoformat() if flag.created_at else None,
    }


def serialize_post(post: Post) -> dict:
    return {
        "id": post.id,
        "author_id": post.author_id,
        "kind": post.kind,
        "parent_id": post.parent_id,
        "title": post.title,
        "body": post.body,
        "county": post.county,
        "status": post.status,
        "created_at": post.created_at.isoformat() if post.created_at else None,
    }
