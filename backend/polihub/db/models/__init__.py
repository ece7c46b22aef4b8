from polihub.db.models.global_logout_marker import GlobalLogoutMarker
from polihub.db.models.moderation_flag import ModerationFlag
from polihub.db.models.politician import Politician
from polihub.db.models.post import Post
from polihub.db.models.staff import Staff
from polihub.db.models.staff_audit_log import StaffAuditLog
from polihub.db.models.trust_score_event import TrustScoreEvent
from polihub.db.models.user import User

__all__ = [
    "GlobalLogoutMarker",
    "ModerationFlag",
    "Politician",
    "Post",
    "Staff",
    "StaffAuditLog",
    "TrustScoreEvent",
    "User",
]
