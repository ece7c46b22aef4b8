import json
import logging
from dataclasses import dataclass
from typing import Union

logger = logging.getLogger(__name__)

LEGACY_WILDCARD = "*"

PERMISSION_LABELS: dict[str, str] = {
    "create_politician": "Create politician profiles",
    "edit_politician": "Edit politician profiles",
    "delete_politician": "Delete politician profiles",
    "manage_content": "Manage news and learning content",
    "moderation.review": "Review and resolve moderation flags",
    "trust.manage": "Adjust trust scores and user standing",
    "staff.manage": "Provision and manage staff accounts",
    "audit.view": "View audit log and metrics",
    "sessions.global_logout": "Log out every session",
}

ROLE_TEMPLATES: dict[str, list[str]] = {
    "admin": [LEGACY_WILDCARD],
    "moderator": ["moderation.review", "trust.manage"],
    "editor": ["create_politician", "edit_politician", "manage_content"],
    "educator": ["manage_content"],
    "viewer": [],
}

COMMUNITY_PERMISSIONS = frozenset({"submit_posts", "comment_posts", "flag_content"})
HIGH_TRUST_PERMISSIONS = frozenset({"peer_review", "auto_approve_content"})


@dataclass(frozen=True)
class AllPermissions:
    def names(self) -> list[str]:
        return [LEGACY_WILDCARD]


@dataclass(frozen=True)
class NamedPermissions:
    items: frozenset[str] = frozenset()

    def names(self) -> list[str]:
        return sorted(self.items)


PermissionSet = Union[AllPermissions, NamedPermissions]

NO_PERMISSIONS = NamedPermissions()


def normalize_role(role: str | None) -> str:
    value = (role or "").strip().lower()
    if value in ROLE_TEMPLATES:
        return value
    return "viewer"


def _from_list(values: list) -> PermissionSet:
    names: set[str] = set()
    for value in values:
        if not isinstance(value, str):
            logger.warning("permission_parse skipped non-string entry=%r", value)
            continue
        name = value.strip()
        if name == LEGACY_WILDCARD:
            return AllPermissions()
        if name:
            names.add(name)
    return NamedPermissions(frozenset(names))


def parse_permission_set(raw) -> PermissionSet:
    """Parse a stored permission value into a PermissionSet.

    Accepts a list, the JSON text of a list, or the legacy wildcard marker
    (bare or JSON-quoted). Anything else resolves to an empty set.
    """
    if raw is None:
        return NO_PERMISSIONS
    if isinstance(raw, (list, tuple, set, frozenset)):
        return _from_list(list(raw))
    if not isinstance(raw, str):
        logger.warning("permission_parse unsupported type=%s", type(raw).__name__)
        return NO_PERMISSIONS

    text = raw.strip()
    if not text:
        return NO_PERMISSIONS
    if text == LEGACY_WILDCARD:
        return AllPermissions()
    try:
        decoded = json.loads(text)
    except ValueError:
        logger.warning("permission_parse malformed value=%r", text[:64])
        return NO_PERMISSIONS
    if isinstance(decoded, list):
        return _from_list(decoded)
    if decoded == LEGACY_WILDCARD:
        return AllPermissions()
    logger.warning("permission_parse non-list value=%r", text[:64])
    return NO_PERMISSIONS


def serialize_permission_set(permissions: PermissionSet) -> str:
    if isinstance(permissions, AllPermissions):
        return LEGACY_WILDCARD
    return json.dumps(permissions.names())


def permission_set_from_names(names: list[str] | None) -> PermissionSet:
    return _from_list(list(names or []))


def has_permission(permissions: PermissionSet, name: str) -> bool:
    try:
        if isinstance(permissions, AllPermissions):
            return True
        if isinstance(permissions, NamedPermissions):
            return name in permissions.items
    except Exception:
        logger.exception("permission_check failed name=%s", name)
    return False


def role_template(role: str | None) -> PermissionSet:
    return permission_set_from_names(ROLE_TEMPLATES[normalize_role(role)])


def community_permission_set(standing: str, trust_score: int, high_trust_threshold: int) -> PermissionSet:
    if standing == "blocked":
        return NO_PERMISSIONS
    items = set(COMMUNITY_PERMISSIONS)
    if standing == "normal" and trust_score >= high_trust_threshold:
        items |= HIGH_TRUST_PERMISSIONS
    return NamedPermissions(frozenset(items))


def permissions_catalog_payload() -> dict:
    return {
        "permissions": [{"name": name, "label": label} for name, label in PERMISSION_LABELS.items()],
        "roles": [{"role": role, "permissions": list(perms)} for role, perms in ROLE_TEMPLATES.items()],
        "wildcard": LEGACY_WILDCARD,
    }
