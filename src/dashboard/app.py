"""Streamlit dashboard for MSP findings, organizations, agents and annotations."""

from __future__ import annotations

import os
from typing import Any

import httpx
import streamlit as st

from src.dashboard.view_models import (
    DEVICE_STATUSES,
    PRIORITY_LABELS,
    SORT_FIELDS,
    average_close_hours,
    build_finding_rows,
    count_by,
    device_status,
    device_totals,
    distinct_values,
    filter_devices,
    filter_findings,
    findings_timeline,
    flatten_devices,
    local_assignee,
    overview_metrics,
    priority_distribution,
    priority_label,
    sort_findings,
    status_badges,
    top_organizations,
    upstream_assignee,
    user_display_name,
)

DEFAULT_API_BASE_URL = os.getenv("BLUMIRA_DASHBOARD_API_URL", "http://localhost:8000")
HTTP_TIMEOUT_SECONDS = 60.0
DASHBOARD_CACHE_TTL_SECONDS = 60
MAX_TABLE_ROWS = 500
VIEWS = ("Overview", "Findings", "Organizations", "Agents", "Analytics", "Settings")


def _api_request(
    base_url: str,
    method: str,
    path: str,
    *,
    params: dict[str, Any] | None = None,
    json: dict[str, Any] | None = None,
) -> dict[str, Any]:
    url = f"{base_url.rstrip('/')}{path}"
    with httpx.Client(timeout=HTTP_TIMEOUT_SECONDS) as client:
        response = client.request(method, url, params=params, json=json)
        response.raise_for_status()
        payload = response.json()
    if not isinstance(payload, dict):
        raise ValueError(f"Unexpected API payload type for {path}: {type(payload)!r}")
    return payload


def _api_get(base_url: str, path: str, *, params: dict[str, Any] | None = None) -> dict[str, Any]:
    return _api_request(base_url, "GET", path, params=params)


def _error_detail(exc: httpx.HTTPStatusError) -> dict[str, Any]:
    try:
        payload = exc.response.json()
    except ValueError:
        return {"error": exc.response.text}
    detail = payload.get("detail") if isinstance(payload, dict) else None
    if isinstance(detail, dict):
        return detail
    return {"error": str(detail or payload)}


def needs_credentials(exc: httpx.HTTPStatusError) -> bool:
    """True when the failure should route the operator to the settings view."""
    code = _error_detail(exc).get("code")
    return code in {"credentials_missing", "authentication_failed"}


def _fetch_dashboard(base_url: str) -> dict[str, Any]:
    return _api_get(base_url, "/api/v1/dashboard")


def _fetch_organizations(base_url: str) -> dict[str, Any]:
    return _api_get(base_url, "/api/v1/organizations")


def _fetch_annotations(base_url: str) -> tuple[dict[str, dict[str, Any]], int]:
    payload = _api_get(base_url, "/api/v1/annotations")
    items = payload.get("items")
    if not isinstance(items, dict):
        return {}, int(payload.get("version") or 0)
    return {str(key): value for key, value in items.items() if isinstance(value, dict)}, int(payload.get("version") or 0)


def _fetch_finding_detail(base_url: str, account_id: str, finding_id: str) -> dict[str, Any]:
    return _api_get(base_url, f"/api/v1/findings/{account_id}/{finding_id}")


def add_note(base_url: str, finding_id: str, text: str, author: str = "You") -> dict[str, Any]:
    return _api_request(base_url, "POST", f"/api/v1/annotations/{finding_id}/notes", json={"text": text, "author": author})


def set_assignee(base_url: str, finding_id: str, assignee: str) -> dict[str, Any]:
    return _api_request(base_url, "PUT", f"/api/v1/annotations/{finding_id}/assignee", json={"assignee": assignee})


def set_local_status(base_url: str, finding_id: str, status: str) -> dict[str, Any]:
    return _api_request(base_url, "PUT", f"/api/v1/annotations/{finding_id}/status", json={"status": status})


def clear_annotation(base_url: str, finding_id: str) -> dict[str, Any]:
    return _api_request(base_url, "DELETE", f"/api/v1/annotations/{finding_id}")


def bulk_action(base_url: str, action: str, finding_ids: list[str], **fields: Any) -> dict[str, Any]:
    """Run one of the bulk endpoints (assignee, notes, status, close)."""
    return _api_request(
        base_url, "POST", f"/api/v1/annotation-batches/{action}", json={"finding_ids": finding_ids, **fields}
    )


def _show_load_error(exc: Exception, what: str, retry_key: str) -> None:
    if isinstance(exc, httpx.HTTPStatusError):
        detail = _error_detail(exc)
        st.error(f"Failed to load {what} (HTTP {exc.response.status_code}): {detail.get('error', '')}")
        if needs_credentials(exc):
            st.info("Open **Settings** in the sidebar to enter API credentials.")
    else:
        st.error(f"Failed to load {what}: {exc}")
    if st.button("Retry", key=retry_key):
        st.cache_data.clear()
        st.rerun()


def _mutate(operation, *args: Any, **kwargs: Any) -> None:
    """Run an annotation write, then rerun so every view re-reads annotations."""
    try:
        operation(*args, **kwargs)
    except httpx.HTTPError as exc:
        st.error(f"Annotation update failed: {exc}")
        return
    st.rerun()


def render_overview(findings: list[dict[str, Any]], annotations: dict[str, dict[str, Any]]) -> None:
    metrics = overview_metrics(findings)
    cols = st.columns(4)
    cols[0].metric("Total Findings", metrics["total"])
    cols[1].metric("Critical", metrics["critical"])
    cols[2].metric("Open", metrics["open"])
    cols[3].metric("Last 7 Days", len(metrics["recent"]))

    left, right = st.columns(2)
    with left:
        st.subheader("Priority Distribution")
        st.bar_chart({row["label"]: row["count"] for row in priority_distribution(findings)})
    with right:
        st.subheader("Findings by Organization")
        st.dataframe(top_organizations(findings, limit=10), hide_index=True, use_container_width=True)

    st.subheader("Recent Findings")
    recent = metrics["recent"][:20]
    if not recent:
        st.info("No findings in the last 7 days.")
    else:
        st.dataframe(build_finding_rows(recent, annotations), hide_index=True, use_container_width=True)


def _render_finding_detail(base_url: str, finding: dict[str, Any], annotation: dict[str, Any] | None) -> None:
    finding_id = str(finding.get("finding_id") or "")
    st.markdown(f"**{finding.get('name') or finding_id}**")
    st.caption(" | ".join([priority_label(finding.get("priority")), *status_badges(finding, annotation)]))

    try:
        detail = _fetch_finding_detail(base_url, str(finding.get("org_id") or ""), finding_id)
        data = detail.get("data") or finding
        if detail.get("url"):
            st.markdown(f"[Open upstream]({detail['url']})")
    except httpx.HTTPError:
        data = finding
    for field in ("description", "summary", "hostname", "ip_address", "user", "rule_name", "evidence"):
        if data.get(field):
            st.markdown(f"**{field.replace('_', ' ').title()}:** {data[field]}")

    assignee = st.text_input(
        "Assignee",
        value=local_assignee(annotation),
        key=f"assignee-{finding_id}",
    )
    upstream = upstream_assignee(finding)
    if upstream:
        st.caption(f"Currently assigned to: {upstream}")
    cols = st.columns(4)
    if cols[0].button("Save assignee", key=f"save-assignee-{finding_id}"):
        _mutate(set_assignee, base_url, finding_id, assignee.strip())
    current_status = (annotation or {}).get("localStatus") or "none"
    if current_status == "closed":
        if cols[1].button("Reopen", key=f"reopen-{finding_id}"):
            _mutate(set_local_status, base_url, finding_id, "none")
    elif cols[1].button("Close locally", key=f"close-{finding_id}"):
        _mutate(set_local_status, base_url, finding_id, "closed")
    if current_status != "in_progress" and cols[2].button("In progress", key=f"progress-{finding_id}"):
        _mutate(set_local_status, base_url, finding_id, "in_progress")
    if annotation and cols[3].button("Clear annotation", key=f"clear-{finding_id}"):
        _mutate(clear_annotation, base_url, finding_id)

    st.markdown("**Notes**")
    for note in (annotation or {}).get("notes") or []:
        st.markdown(f"- _{note.get('author', '')}_ ({str(note.get('timestamp', ''))[:19]}): {note.get('text', '')}")
    note_text = st.text_area("Add note", key=f"note-{finding_id}")
    if st.button("Add note", key=f"add-note-{finding_id}", disabled=not note_text.strip()):
        _mutate(add_note, base_url, finding_id, note_text.strip())


def render_findings(
    base_url: str,
    findings: list[dict[str, Any]],
    annotations: dict[str, dict[str, Any]],
    users: list[dict[str, Any]],
    search: str,
) -> None:
    cols = st.columns(5)
    organization = cols[0].selectbox("Organization", ["all", *distinct_values(findings, "org_name")])
    priority = cols[1].selectbox(
        "Priority",
        ["all", *[str(value) for value in PRIORITY_LABELS]],
        format_func=lambda value: value if value == "all" else priority_label(value),
    )
    status = cols[2].selectbox("Status", ["all", *distinct_values(findings, "status_name")])
    local = cols[3].selectbox("Local status", ["all", "none", "in_progress", "closed"])
    sort_field = cols[4].selectbox("Sort by", SORT_FIELDS)
    descending = st.toggle("Descending", value=False)

    filtered = filter_findings(
        findings,
        search=search,
        organization=organization,
        priority=priority,
        status=status,
        local=local,
        annotations=annotations,
    )
    ordered = sort_findings(filtered, sort_field, descending)
    rows = build_finding_rows(ordered[:MAX_TABLE_ROWS], annotations)
    st.caption(f"{len(filtered)} of {len(findings)} findings")
    if not rows:
        st.info("No findings match the current filters.")
        return
    st.dataframe(rows, hide_index=True, use_container_width=True)

    labels = {row["finding_id"]: f'{row["priority"]} | {row["organization"]} | {row["name"][:80]}' for row in rows}
    by_id = {str(finding.get("finding_id")): finding for finding in ordered}

    with st.expander("Bulk actions"):
        selected = st.multiselect("Findings", list(labels), format_func=lambda value: labels.get(value, value))
        action = st.radio("Action", ["Assign", "Add note", "Close"], horizontal=True)
        if action == "Assign":
            options = [""] + [user_display_name(user) for user in users]
            picked = st.selectbox("Known user", options)
            typed = st.text_input("Assignee", value=picked)
            if st.button(f"Assign {len(selected)}", disabled=not selected or not typed.strip()):
                _mutate(bulk_action, base_url, "assignee", selected, assignee=typed.strip())
        elif action == "Add note":
            text = st.text_area("Note for all selected findings")
            if st.button(f"Add to {len(selected)}", disabled=not selected or not text.strip()):
                _mutate(bulk_action, base_url, "notes", selected, text=text.strip(), author="You")
        elif st.button(f"Close {len(selected)}", disabled=not selected):
            _mutate(bulk_action, base_url, "close", selected)

    st.subheader("Finding detail")
    chosen = st.selectbox("Open finding", list(labels), format_func=lambda value: labels.get(value, value))
    if chosen:
        _render_finding_detail(base_url, by_id[chosen], annotations.get(chosen))


def render_organizations(organizations: list[dict[str, Any]], totals: dict[str, Any]) -> None:
    cols = st.columns(4)
    cols[0].metric("Organizations", len(organizations))
    cols[1].metric("Findings", totals.get("total_findings", 0))
    cols[2].metric("Devices", totals.get("total_devices", 0))
    cols[3].metric("Agent capacity used", f'{totals.get("total_agent_used", 0)}/{totals.get("total_agent_capacity", 0)}')
    for org in sorted(organizations, key=lambda item: str(item.get("name") or "").lower()):
        stats = org.get("stats") or {}
        with st.container(border=True):
            st.markdown(f"**{org.get('name') or org.get('account_id')}**")
            row = st.columns(5)
            row[0].metric("Findings", stats.get("total_findings", 0))
            row[1].metric("Critical", stats.get("critical_findings", 0))
            row[2].metric("Open", stats.get("open_findings", 0))
            row[3].metric("Devices online", f'{stats.get("online_devices", 0)}/{stats.get("total_devices", 0)}')
            row[4].metric("Agent keys", stats.get("agent_keys_count", 0))


def render_agents(organizations: list[dict[str, Any]], search: str) -> None:
    totals = device_totals(organizations)
    cols = st.columns(6)
    for col, key in zip(cols, ("total", *DEVICE_STATUSES, "keys")):
        col.metric(key.title(), totals[key])

    devices = flatten_devices(organizations)
    org_options = {"all": "All organizations"} | {
        str(org.get("account_id")): str(org.get("name") or org.get("account_id")) for org in organizations
    }
    filter_cols = st.columns(2)
    status = filter_cols[0].selectbox("Device status", ["all", *DEVICE_STATUSES])
    org_id = filter_cols[1].selectbox("Organization", list(org_options), format_func=lambda value: org_options[value])
    filtered = filter_devices(devices, search=search, status=status, org_id=org_id)
    st.caption(f"{len(filtered)} of {len(devices)} devices")
    rows = [
        {
            "hostname": device.get("hostname") or "",
            "organization": device.get("org_name") or "",
            "platform": device.get("plat") or "",
            "arch": device.get("arch") or "",
            "status": device_status(device),
            "last_seen": str(device.get("alive") or "")[:19],
            "key": device.get("keyname") or "",
        }
        for device in filtered[:MAX_TABLE_ROWS]
    ]
    st.dataframe(rows, hide_index=True, use_container_width=True)


def render_analytics(findings: list[dict[str, Any]]) -> None:
    if not findings:
        st.info("No findings to analyze.")
        return
    cols = st.columns(3)
    cols[0].metric("Findings", len(findings))
    cols[1].metric("Not open", sum(1 for finding in findings if finding.get("status_name") != "Open"))
    cols[2].metric("Avg close time (h)", average_close_hours(findings))

    st.subheader("Last 14 days")
    timeline = findings_timeline(findings)
    st.bar_chart({row["label"]: row["value"] for row in timeline})

    left, right = st.columns(2)
    with left:
        st.subheader("By status")
        st.dataframe(count_by(findings, "status_name"), hide_index=True, use_container_width=True)
        st.subheader("Top organizations")
        st.dataframe(count_by(findings, "org_name", limit=10), hide_index=True, use_container_width=True)
    with right:
        st.subheader("By priority")
        st.dataframe(priority_distribution(findings), hide_index=True, use_container_width=True)
        st.subheader("Top types")
        st.dataframe(count_by(findings, "type_name", limit=10), hide_index=True, use_container_width=True)


def render_settings(base_url: str) -> None:
    try:
        status = _api_get(base_url, "/api/v1/credentials")
    except httpx.HTTPError as exc:
        st.error(f"Could not read credential status: {exc}")
        status = {}
    if status.get("has_credentials"):
        st.success("API credentials are configured.")
    else:
        st.warning("API credentials are missing.")

    with st.form("credentials"):
        client_id = st.text_input("Client ID")
        client_secret = st.text_input("Client Secret", type="password")
        submitted = st.form_submit_button("Validate and save")
    if submitted:
        try:
            _api_request(
                base_url,
                "POST",
                "/api/v1/credentials",
                json={"client_id": client_id, "client_secret": client_secret},
            )
        except httpx.HTTPStatusError as exc:
            st.error(f"Credentials rejected (HTTP {exc.response.status_code}): {_error_detail(exc).get('error', '')}")
            return
        except httpx.HTTPError as exc:
            st.error(f"Could not save credentials: {exc}")
            return
        st.cache_data.clear()
        st.success("Credentials validated and set for this session.")


def main() -> None:
    st.set_page_config(page_title="MSP Security Dashboard", page_icon=":shield:", layout="wide")

    with st.sidebar:
        st.header("MSP Security")
        view = st.radio("View", VIEWS)
        search = st.text_input("Search")
        api_base_url = st.text_input("API Base URL", value=DEFAULT_API_BASE_URL, help="FastAPI base URL")
        if st.button("Reload"):
            st.cache_data.clear()

    st.title(view)

    @st.cache_data(ttl=DASHBOARD_CACHE_TTL_SECONDS, show_spinner=False)
    def cached_dashboard(base_url: str) -> dict[str, Any]:
        return _fetch_dashboard(base_url)

    @st.cache_data(ttl=DASHBOARD_CACHE_TTL_SECONDS, show_spinner=False)
    def cached_organizations(base_url: str) -> dict[str, Any]:
        return _fetch_organizations(base_url)

    if view == "Settings":
        render_settings(api_base_url)
        return

    if view in {"Organizations", "Agents"}:
        try:
            payload = cached_organizations(api_base_url)
        except Exception as exc:  # noqa: BLE001
            _show_load_error(exc, "organizations", retry_key="retry-organizations")
            return
        organizations = payload.get("organizations") or []
        if view == "Organizations":
            render_organizations(organizations, payload.get("totals") or {})
        else:
            render_agents(organizations, search)
        return

    try:
        payload = cached_dashboard(api_base_url)
    except Exception as exc:  # noqa: BLE001
        _show_load_error(exc, "dashboard data", retry_key="retry-dashboard")
        return
    findings = [item for item in payload.get("findings") or [] if isinstance(item, dict)]

    # Annotations are never cached: every rerun re-reads them before painting.
    try:
        annotations, _version = _fetch_annotations(api_base_url)
    except httpx.HTTPError as exc:
        st.warning(f"Annotations unavailable: {exc}")
        annotations = {}

    if view == "Overview":
        render_overview(findings, annotations)
    elif view == "Findings":
        render_findings(api_base_url, findings, annotations, payload.get("users") or [], search)
    else:
        render_analytics(findings)


if __name__ == "__main__":
    main()
