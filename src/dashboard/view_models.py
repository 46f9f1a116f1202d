"""Pure helpers that turn API payloads into dashboard rows and metrics.

Upstream findings arrive as plain JSON mappings. Annotations are keyed by
finding id and merged at display time only; nothing here mutates either side.
"""

from __future__ import annotations

from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any

PRIORITY_LABELS: dict[int, str] = {
    1: "Critical",
    2: "High",
    3: "Medium",
    4: "Low",
    5: "Info",
}
OPEN_STATUS = "Open"
LOCAL_STATUS_LABELS: dict[str, str] = {
    "none": "",
    "in_progress": "In progress locally",
    "closed": "Closed locally",
}
SORT_FIELDS = ("priority", "created", "name", "org_name")
DEVICE_STATUSES = ("online", "sleeping", "isolated", "excluded")

_EPOCH_MIN = datetime.min.replace(tzinfo=timezone.utc)


def parse_timestamp(value: str | None) -> datetime:
    """Parse an ISO timestamp into an aware UTC datetime; unparsable values sort first."""
    if not value:
        return _EPOCH_MIN
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return _EPOCH_MIN
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def priority_label(priority: Any) -> str:
    try:
        value = int(priority)
    except (TypeError, ValueError):
        return "Unknown"
    return PRIORITY_LABELS.get(value, f"P{value}")


def _priority(finding: dict[str, Any]) -> int:
    try:
        return int(finding.get("priority"))
    except (TypeError, ValueError):
        return 99


def local_assignee(annotation: dict[str, Any] | None) -> str:
    value = (annotation or {}).get("assignee")
    return value if isinstance(value, str) else ""


def upstream_assignee(finding: dict[str, Any]) -> str:
    """Upstream ``assigned_to_name``, else ``assigned_to``, else empty."""
    for candidate in (finding.get("assigned_to_name"), finding.get("assigned_to")):
        if isinstance(candidate, str) and candidate.strip():
            return candidate
    return ""


def display_assignee(finding: dict[str, Any], annotation: dict[str, Any] | None) -> str:
    """Resolve the assignee shown for a row.

    Precedence: local annotation assignee, upstream ``assigned_to_name``,
    upstream ``assigned_to``, else empty.
    """
    local = local_assignee(annotation)
    if local.strip():
        return local
    return upstream_assignee(finding)


def local_status(annotation: dict[str, Any] | None) -> str:
    status = (annotation or {}).get("localStatus") or "none"
    return status if status in LOCAL_STATUS_LABELS else "none"


def status_badges(finding: dict[str, Any], annotation: dict[str, Any] | None) -> list[str]:
    """Upstream status first, then the local overlay when one is set."""
    badges = [str(finding.get("status_name") or "Unknown")]
    overlay = LOCAL_STATUS_LABELS[local_status(annotation)]
    if overlay:
        badges.append(overlay)
    return badges


def note_count(annotation: dict[str, Any] | None) -> int:
    notes = (annotation or {}).get("notes")
    return len(notes) if isinstance(notes, list) else 0


def build_finding_rows(
    findings: list[dict[str, Any]],
    annotations: dict[str, dict[str, Any]],
) -> list[dict[str, Any]]:
    """Join findings with their annotations for the findings table."""
    rows: list[dict[str, Any]] = []
    for finding in findings:
        finding_id = str(finding.get("finding_id") or "")
        annotation = annotations.get(finding_id)
        status = local_status(annotation)
        rows.append(
            {
                "finding_id": finding_id,
                "org_id": str(finding.get("org_id") or ""),
                "priority": priority_label(finding.get("priority")),
                "name": str(finding.get("name") or ""),
                "organization": str(finding.get("org_name") or ""),
                "type": str(finding.get("type_name") or ""),
                "status": " | ".join(status_badges(finding, annotation)),
                "local_status": status,
                "closed_locally": status == "closed",
                "assignee": display_assignee(finding, annotation),
                "notes": note_count(annotation),
                "created": str(finding.get("created") or "")[:19],
            }
        )
    return rows


def filter_findings(
    findings: list[dict[str, Any]],
    *,
    search: str = "",
    organization: str = "all",
    priority: str = "all",
    status: str = "all",
    local: str = "all",
    annotations: dict[str, dict[str, Any]] | None = None,
) -> list[dict[str, Any]]:
    term = search.strip().lower()
    annotations = annotations or {}
    result: list[dict[str, Any]] = []
    for finding in findings:
        if term and not any(
            term in str(finding.get(field) or "").lower() for field in ("name", "org_name", "type_name")
        ):
            continue
        if organization != "all" and finding.get("org_name") != organization:
            continue
        if priority != "all" and str(finding.get("priority")) != priority:
            continue
        if status != "all" and finding.get("status_name") != status:
            continue
        if local != "all" and local_status(annotations.get(str(finding.get("finding_id")))) != local:
            continue
        result.append(finding)
    return result


def sort_findings(findings: list[dict[str, Any]], field: str = "priority", descending: bool = False) -> list[dict[str, Any]]:
    if field not in SORT_FIELDS:
        raise ValueError(f"Unsupported sort field: {field}")
    if field == "priority":
        key = _priority
    elif field == "created":
        key = lambda item: parse_timestamp(item.get("created"))  # noqa: E731
    else:
        key = lambda item: str(item.get(field) or "").lower()  # noqa: E731
    return sorted(findings, key=key, reverse=descending)


def distinct_values(findings: list[dict[str, Any]], field: str) -> list[str]:
    return sorted({str(finding.get(field)) for finding in findings if finding.get(field)})


def user_display_name(user: dict[str, Any]) -> str:
    if user.get("name"):
        return str(user["name"])
    full = f"{user.get('first_name') or ''} {user.get('last_name') or ''}".strip()
    return full or str(user.get("email") or "")


def overview_metrics(findings: list[dict[str, Any]], now: datetime | None = None) -> dict[str, Any]:
    """Headline numbers plus last-week findings, newest first."""
    now = now or datetime.now(timezone.utc)
    week_ago = now - timedelta(days=7)
    recent = [finding for finding in findings if parse_timestamp(finding.get("created")) >= week_ago]
    recent.sort(key=lambda item: parse_timestamp(item.get("created")), reverse=True)
    return {
        "total": len(findings),
        "critical": sum(1 for finding in findings if _priority(finding) == 1),
        "open": sum(1 for finding in findings if finding.get("status_name") == OPEN_STATUS),
        "organizations": len({finding.get("org_name") for finding in findings}),
        "recent": recent,
    }


def priority_distribution(findings: list[dict[str, Any]]) -> list[dict[str, Any]]:
    total = len(findings) or 1
    rows = []
    for priority, label in PRIORITY_LABELS.items():
        count = sum(1 for finding in findings if _priority(finding) == priority)
        rows.append({"priority": priority, "label": label, "count": count, "share": round(count / total, 4)})
    return rows


def top_organizations(findings: list[dict[str, Any]], limit: int = 10) -> list[dict[str, Any]]:
    counts: Counter[str] = Counter()
    critical: Counter[str] = Counter()
    for finding in findings:
        org = str(finding.get("org_name") or "")
        counts[org] += 1
        if _priority(finding) == 1:
            critical[org] += 1
    return [
        {"label": org, "count": count, "critical": critical[org]}
        for org, count in counts.most_common(limit)
    ]


def count_by(findings: list[dict[str, Any]], field: str, limit: int | None = None) -> list[dict[str, Any]]:
    counts = Counter(str(finding.get(field) or "") for finding in findings)
    return [{"label": label, "value": value} for label, value in counts.most_common(limit)]


def findings_timeline(findings: list[dict[str, Any]], now: datetime | None = None, days: int = 14) -> list[dict[str, Any]]:
    """Per-day counts for the trailing window ending today (UTC)."""
    today = (now or datetime.now(timezone.utc)).date()
    per_day: Counter = Counter()
    critical_per_day: Counter = Counter()
    for finding in findings:
        created = parse_timestamp(finding.get("created"))
        if created == _EPOCH_MIN:
            continue
        per_day[created.date()] += 1
        if _priority(finding) == 1:
            critical_per_day[created.date()] += 1

    timeline = []
    for offset in range(days - 1, -1, -1):
        day = today - timedelta(days=offset)
        timeline.append(
            {
                "date": day.isoformat(),
                "label": day.strftime("%b %d"),
                "value": per_day[day],
                "critical": critical_per_day[day],
            }
        )
    return timeline


def average_close_hours(findings: list[dict[str, Any]]) -> int:
    """Mean created-to-modified hours over findings no longer open."""
    durations = []
    for finding in findings:
        if finding.get("status_name") == OPEN_STATUS:
            continue
        created = parse_timestamp(finding.get("created"))
        modified = parse_timestamp(finding.get("modified"))
        if created == _EPOCH_MIN or modified == _EPOCH_MIN:
            continue
        durations.append((modified - created).total_seconds() / 3600)
    if not durations:
        return 0
    return round(sum(durations) / len(durations))


def device_status(device: dict[str, Any]) -> str:
    if device.get("is_isolated"):
        return "isolated"
    if device.get("is_excluded"):
        return "excluded"
    if device.get("is_sleeping"):
        return "sleeping"
    return "online"


def _device_matches(device: dict[str, Any], status: str) -> bool:
    if status == "online":
        return not device.get("is_sleeping") and not device.get("is_isolated") and not device.get("is_excluded")
    return bool(device.get(f"is_{status}"))


def flatten_devices(organizations: list[dict[str, Any]]) -> list[dict[str, Any]]:
    devices = []
    for org in organizations:
        for device in org.get("agent_devices") or []:
            devices.append({**device, "org_id": org.get("account_id"), "org_name": org.get("name") or ""})
    return devices


def filter_devices(
    devices: list[dict[str, Any]],
    *,
    search: str = "",
    status: str = "all",
    org_id: str = "all",
) -> list[dict[str, Any]]:
    term = search.strip().lower()
    result = []
    for device in devices:
        if term and not any(
            term in str(device.get(field) or "").lower() for field in ("hostname", "org_name", "plat")
        ):
            continue
        if status != "all" and not _device_matches(device, status):
            continue
        if org_id != "all" and device.get("org_id") != org_id:
            continue
        result.append(device)
    return result


def device_totals(organizations: list[dict[str, Any]]) -> dict[str, int]:
    devices = flatten_devices(organizations)
    totals = {"total": len(devices)}
    for status in DEVICE_STATUSES:
        totals[status] = sum(1 for device in devices if _device_matches(device, status))
    totals["keys"] = sum(len(org.get("agent_keys") or []) for org in organizations)
    return totals
