import logging
import secrets
import uuid

from sqlalchemy.orm import Session

from polihub.core.errors import InputValidationError
from polihub.core.metrics import increment_counter
from polihub.core.utils import utc_now_naive
from polihub.db.models.user import User
from polihub.services import trust

logger = logging.getLogger(__name__)

NICKNAME_ADJECTIVES = (
    "Bold", "Bright", "Calm", "Clever", "Curious", "Eager", "Fair", "Gentle",
    "Honest", "Keen", "Loyal", "Quiet", "Steady", "Swift", "Wise", "Brave",
)
NICKNAME_NOUNS = (
    "Baobab", "Citizen", "Eagle", "Falcon", "Giraffe", "Heron", "Impala", "Kestrel",
    "Leopard", "Lion", "Mwananchi", "Owl", "Rhino", "Sunbird", "Voter", "Zebra",
)
EMOJI_POOL = (
    "😊", "🤔", "🎭", "🦊", "🐱", "🦁", "🐯", "🐨", "🐼", "🐸",
    "🦋", "🌸", "🌺", "🌻", "🌹", "🌷", "🍀", "⭐", "🌟", "💫",
    "🔥", "💧", "⚡", "🌈", "🎨", "🎪", "🎯", "🎲", "🎮",
)
KENYAN_COUNTIES = (
    "Baringo", "Bomet", "Bungoma", "Busia", "Elgeyo-Marakwet", "Embu", "Garissa",
    "Homa Bay", "Isiolo", "Kajiado", "Kakamega", "Kericho", "Kiambu", "Kilifi",
    "Kirinyaga", "Kisii", "Kisumu", "Kitui", "Kwale", "Laikipia", "Lamu", "Machakos",
    "Makueni", "Mandera", "Marsabit", "Meru", "Migori", "Mombasa", "Murang'a",
    "Nairobi", "Nakuru", "Nandi", "Narok", "Nyamira", "Nyandarua", "Nyeri", "Samburu",
    "Siaya", "Taita-Taveta", "Tana River", "Tharaka-Nithi", "Trans Nzoia", "Turkana",
    "Uasin Gishu", "Vihiga", "Wajir", "West Pokot",
)
_COUNTY_BY_KEY = {county.lower(): county for county in KENYAN_COUNTIES}


def random_nickname() -> str:
    adjective = secrets.choice(NICKNAME_ADJECTIVES)
    noun = secrets.choice(NICKNAME_NOUNS)
    return f"{adjective}{noun}{secrets.randbelow(900) + 100}"


def normalize_county(value: str | None) -> str | None:
    if value is None or not value.strip():
        return None
    county = _COUNTY_BY_KEY.get(value.strip().lower())
    if county is None:
        raise InputValidationError("Unknown county")
    return county


def normalize_nickname(value: str | None) -> str | None:
    if value is None:
        return None
    nickname = " ".join(value.split())
    if not 2 <= len(nickname) <= 50:
        raise InputValidationError("Nickname must be 2-50 characters")
    return nickname


def generate_identity(
    db: Session,
    *,
    nickname: str | None = None,
    emoji: str | None = None,
    county: str | None = None,
    assign_county: bool = True,
    trust_config: trust.TrustConfig | None = None,
) -> User:
    """Create an anonymous visitor identity with its baseline trust event."""
    nickname = normalize_nickname(nickname)
    county = normalize_county(county)
    if emoji is not None and emoji not in EMOJI_POOL:
        raise InputValidationError("Unsupported emoji")
    if county is None and assign_county:
        county = secrets.choice(KENYAN_COUNTIES)

    now = utc_now_naive()
    user = User(
        uuid=str(uuid.uuid4()),
        nickname=nickname or random_nickname(),
        emoji=emoji or secrets.choice(EMOJI_POOL),
        county=county,
        trust_score=0,
        standing=trust.Standing.NORMAL.value,
        violation_count=0,
        is_deleted=False,
        created_at=now,
        last_active_at=now,
    )
    db.add(user)
    db.flush()
    trust.initialize_score(db, user, trust_config)
    db.commit()
    db.refresh(user)

    increment_counter("identity_created_total")
    logger.info("identity_created user_id=%s county=%s", user.id, user.county)
    return user


def serialize_user(user: User) -> dict:
    return {
        "uuid": user.uuid,
        "nickname": user.nickname,
        "emoji": user.emoji,
        "county": user.county,
        "trust_score": user.trust_score,
        "standing": user.standing,
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }
