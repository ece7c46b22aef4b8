"""Process-local counters exposed as JSON and Prometheus text."""

import re
from collections import Counter
from threading import Lock

LabelKey = tuple[tuple[str, str], ...]

_metrics_lock = Lock()
_counters: Counter[tuple[str, LabelKey]] = Counter()

METRIC_DESCRIPTIONS: dict[str, str] = {
    "http_requests_total": "HTTP requests served by the API.",
    "http_errors_total": "HTTP error responses (4xx/5xx).",
    "identity_created_total": "Anonymous identities issued.",
    "staff_login_total": "Staff login attempts by result.",
    "global_logout_total": "Global logout operations.",
    "rate_limited_total": "Requests rejected by a rate limiter.",
    "trust_adjustments_total": "Trust score adjustments applied.",
    "trust_standing_changes_total": "Posting standing transitions.",
    "moderation_screen_total": "Content screen decisions.",
    "moderation_community_flags_total": "Community flags raised.",
    "moderation_community_hidden_total": "Posts hidden by community flag weight.",
    "moderation_flags_resolved_total": "Moderation flags resolved by staff.",
    "staff_action_total": "Audited staff actions.",
}

_NAME_RE = re.compile(r"[^a-zA-Z0-9_:]")


def _label_key(labels: dict[str, str]) -> LabelKey:
    return tuple(sorted((str(k), str(v)) for k, v in labels.items()))


def increment_counter(name: str, value: int = 1, **labels: str) -> None:
    with _metrics_lock:
        _counters[(name, _label_key(labels))] += int(value)


def get_counter(name: str, **labels: str) -> int:
    with _metrics_lock:
        return _counters.get((name, _label_key(labels)), 0)


def reset_metrics() -> None:
    with _metrics_lock:
        _counters.clear()


def _grouped() -> dict[str, list[tuple[LabelKey, int]]]:
    groups: dict[str, list[tuple[LabelKey, int]]] = {}
    with _metrics_lock:
        for (name, labels), value in sorted(_counters.items()):
            groups.setdefault(name, []).append((labels, value))
    return groups


def snapshot_metrics() -> dict[str, list[dict]]:
    return {
        name: [{"labels": dict(labels), "value": value} for labels, value in series]
        for name, series in _grouped().items()
    }


def _metric_name(name: str) -> str:
    clean = _NAME_RE.sub("_", name)
    return clean if re.match(r"[a-zA-Z_:]", clean) else f"metric_{clean}"


def _label_text(labels: LabelKey) -> str:
    if not labels:
        return ""
    escaped = (
        (k, v.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")) for k, v in labels
    )
    return "{" + ",".join(f'{k}="{v}"' for k, v in escaped) + "}"


def prometheus_text() -> str:
    lines: list[str] = []
    for raw_name, series in _grouped().items():
        name = _metric_name(raw_name)
        if raw_name in METRIC_DESCRIPTIONS:
            lines.append(f"# HELP {name} {METRIC_DESCRIPTIONS[raw_name]}")
        lines.append(f"# TYPE {name} counter")
        lines.extend(f"{name}{_label_text(labels)} {value}" for labels, value in series)
    return "\n".join(lines) + "\n"
