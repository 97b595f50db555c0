#!/usr/bin/env python3
"""
Streamlit UI for DVcheck membership management.
"""

import hashlib
import time
import traceback
from typing import Any, Optional

import streamlit as st

import pandas as pd

from config import (
    DEPARTMENTS,
    EVENT_PICTURE_TYPES,
    MEMBERS_PAGE_PREVIEW_ROWS,
    PREVIEW_WIDTH_QR,
    ROLE_FALLBACK_POLICY,
    ROLES,
    TEMPLATE_FILENAME,
)
from data_loaders import build_template_workbook, load_members, records_to_dataframe
from models import Member, MemberRecord
from qr_codec import decode_qr_image, payload_round_trips, render_qr_png
from repository import InMemoryRepository, RepositoryError, firestore_repositories
from services import (
    RoleFallback,
    bulk_create_members,
    check_in,
    create_event,
    create_member,
    delete_event,
    delete_member,
    generate_missing_qr_codes,
    list_events,
    list_members,
    resolve_role,
    search_members,
    sign_in,
    summary_message,
    update_event,
)
from utils import image_data_url, safe_filename
from validation import validate_members

# Startup timing (logged to stdout for Streamlit Cloud logs)
_UI_T0 = time.perf_counter()
def _ui_log(msg: str) -> None:
    print(f"[ui] +{time.perf_counter() - _UI_T0:.3f}s {msg}", flush=True)

_ui_log("ui.py start")

st.set_page_config(page_title="DVcheck", page_icon="🪪", layout="centered")

st.markdown(
    """
<style>
  button, input, textarea, select {
    border-radius: 10px !important;
  }
  .main .block-container {
    max-width: 980px;
    padding-top: 1rem;
    padding-bottom: 2.5rem;
  }
</style>
""",
    unsafe_allow_html=True,
)

# Initialize session state
if "current_member" not in st.session_state:
    st.session_state.current_member = None
if "upload_records" not in st.session_state:
    st.session_state.upload_records = None
if "upload_stats" not in st.session_state:
    st.session_state.upload_stats = None
if "last_summary" not in st.session_state:
    st.session_state.last_summary = None
if "scan_message" not in st.session_state:
    st.session_state.scan_message = None


def _get_repositories():
    """Firestore when configured in Streamlit Secrets, otherwise a per-session in-memory store."""
    secrets_firestore = {}
    try:
        secrets_firestore = dict(st.secrets.get("firestore", {}))  # type: ignore[attr-defined]
    except Exception:
        secrets_firestore = {}
    if secrets_firestore.get("project_id"):
        if "_firestore_repos" not in st.session_state:
            st.session_state._firestore_repos = firestore_repositories(secrets_firestore)
            _ui_log("using Firestore repositories")
        return st.session_state._firestore_repos
    if "_memory_repos" not in st.session_state:
        st.session_state._memory_repos = (InMemoryRepository("users"), InMemoryRepository("events"))
        _ui_log("using in-memory repositories")
    return st.session_state._memory_repos


def _show_error(prefix: str, e: Exception) -> None:
    st.error(f"{prefix}: {e}")
    with st.expander("Show error details", expanded=False):
        st.code(traceback.format_exc())


def _member_form(key: str, default_role: str = "member") -> Optional[MemberRecord]:
    """Single-member form; returns a record when submitted with valid input."""
    with st.form(key, clear_on_submit=True):
        c1, c2 = st.columns(2)
        with c1:
            name = st.text_input("Full Name")
            email = st.text_input("Email")
            phone = st.text_input("Phone Number")
            password = st.text_input("Password", type="password", help="Leave empty to use the default password.")
        with c2:
            school = st.text_input("School")
            year = st.selectbox("Year", options=[None, 1, 2, 3, 4, 5], format_func=lambda y: "—" if y is None else str(y))
            department = st.selectbox("Department", options=[None, *DEPARTMENTS], format_func=lambda d: d or "—")
            role = st.selectbox("Role", options=list(ROLES), index=list(ROLES).index(default_role))
        submitted = st.form_submit_button("Create member", type="primary")
    if not submitted:
        return None
    record = MemberRecord(
        name=name.strip(),
        email=email.strip(),
        password=password.strip(),
        phone_number=phone.strip() or None,
        school=school.strip() or None,
        year=year,
        department=department,
        role=role,
    )
    report = validate_members([record])
    if not report.valid:
        for _, message in report.errors:
            st.error(message)
        return None
    if not payload_round_trips(record.name):
        st.warning("Names with commas are shortened when the QR code is scanned.")
    return record


def render_sign_in(members_repo: Any) -> None:
    st.subheader("Sign in")
    try:
        has_members = bool(members_repo.list())
    except RepositoryError as e:
        _show_error("Could not reach the member store", e)
        return
    if not has_members:
        st.info("No members yet. Create the first administrator account.")
        record = _member_form("bootstrap_admin_form", default_role="admin")
        if record is not None:
            try:
                member = create_member(members_repo, record)
            except RepositoryError as e:
                _show_error("Could not create member", e)
                return
            st.success(f"Created {member.name}. Default password: `{member.record.password}`")
        return

    with st.form("sign_in_form"):
        email = st.text_input("Email")
        password = st.text_input("Password", type="password")
        submitted = st.form_submit_button("Sign in", type="primary")
    if submitted:
        try:
            result = sign_in(members_repo, email, password)
        except RepositoryError as e:
            _show_error("Sign-in failed", e)
            return
        if result.success:
            st.session_state.current_member = result.member
            _ui_log(f"signed in {result.member.email}")
            st.rerun()
        else:
            st.error(result.error)


def render_qr(member: Member) -> None:
    if not member.qr_code:
        st.caption("No QR code issued yet.")
        return
    png = render_qr_png(member.qr_code)
    st.image(png, width=PREVIEW_WIDTH_QR)
    st.download_button(
        "⬇️ Download QR code",
        data=png,
        file_name=safe_filename(member.name, "png"),
        mime="image/png",
        key=f"qr_dl_{member.id}",
    )


def render_member_dashboard(member: Member) -> None:
    st.header(f"👋 {member.name}")
    c1, c2 = st.columns([2, 1])
    with c1:
        rows = {
            "Email": member.email,
            "Phone Number": member.record.phone_number or "",
            "School": member.record.school or "",
            "Year": "" if member.record.year is None else str(member.record.year),
            "Department": member.record.department or "",
            "Member ID": member.unique_id,
        }
        st.table(pd.DataFrame({"Field": list(rows), "Value": list(rows.values())}))
    with c2:
        render_qr(member)


def render_members_tab(members_repo: Any, current: Member) -> None:
    with st.expander("➕ Add member", expanded=False):
        record = _member_form("create_member_form")
        if record is not None:
            try:
                member = create_member(members_repo, record)
                st.success(f"Created {member.name} ({member.unique_id})")
            except (RepositoryError, ValueError) as e:
                _show_error("Could not create member", e)

    with st.form("member_search_form"):
        s1, s2 = st.columns([4, 1])
        with s1:
            term = st.text_input("Search", placeholder="Search by name or email…", label_visibility="collapsed")
        with s2:
            st.form_submit_button("Apply")
    try:
        members = search_members(members_repo, term)
    except RepositoryError as e:
        _show_error("Could not load members", e)
        return
    st.markdown(f"**Members:** {len(members)}")

    if st.button("🔁 Generate missing QR codes"):
        try:
            result = generate_missing_qr_codes(members_repo)
        except RepositoryError as e:
            _show_error("Could not issue QR codes", e)
            return
        st.success(f"Issued {result.success} QR code(s), {result.failed} failed")
        for err in result.errors:
            st.error(err)

    for member in members[:MEMBERS_PAGE_PREVIEW_ROWS]:
        with st.expander(f"{member.name} · {member.email} · {member.role}"):
            c1, c2 = st.columns([2, 1])
            with c1:
                st.caption(f"Member ID: `{member.unique_id or '—'}`")
                st.caption(f"Created: {member.created_at or '—'}")
                if member.id != current.id and st.button("🗑️ Delete", key=f"del_{member.id}"):
                    try:
                        delete_member(members_repo, member.id)
                    except RepositoryError as e:
                        _show_error(f"Could not delete {member.name}", e)
                    else:
                        st.rerun()
            with c2:
                render_qr(member)
    if len(members) > MEMBERS_PAGE_PREVIEW_ROWS:
        st.caption(f"Showing first {MEMBERS_PAGE_PREVIEW_ROWS}. Use search to narrow down.")


def render_upload_tab(members_repo: Any) -> None:
    st.caption("Columns: Full Name, Email, Phone Number, Password, School, Year, Department, Role.")
    st.download_button(
        "⬇️ Download template",
        data=build_template_workbook(),
        file_name=TEMPLATE_FILENAME,
        mime="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    )

    with st.form("upload_form", clear_on_submit=False):
        data_file = st.file_uploader("Upload members (Excel or CSV)", type=["xlsx", "xls", "csv"])
        load_uploaded = st.form_submit_button("📥 Load file")
    if load_uploaded:
        if data_file is None:
            st.warning("Please upload a file first.")
        else:
            try:
                result = load_members(data_file, filename=data_file.name)
                st.session_state.upload_records = result.records
                st.session_state.upload_stats = result.stats
                st.session_state.last_summary = None
            except (ValueError, ImportError, OSError) as e:
                _show_error(f"Error reading {data_file.name}", e)
            except Exception as e:
                _show_error(f"Unexpected error reading {data_file.name}", e)

    records = st.session_state.upload_records
    if records is None:
        return
    stats = st.session_state.upload_stats or {}
    st.success(
        f"Loaded **{stats.get('loaded_rows', len(records))}** members "
        f"(source rows: {stats.get('source_rows')}, skipped blank rows: {stats.get('skipped_blank_rows', 0)})."
    )
    st.dataframe(records_to_dataframe(records), use_container_width=True, height=300)

    report = validate_members(records)
    if not report.valid:
        st.error(f"{len(report.errors)} error(s) found. Fix the file and upload it again.")
        st.code("\n".join(report.messages()))
        return

    if st.button(f"🚀 Create {len(records)} member(s)", type="primary"):
        with st.spinner("Creating members…"):
            outcome = bulk_create_members(members_repo, records)
        _ui_log(f"bulk import: {outcome.success} created, {outcome.failed} failed")
        st.session_state.last_summary = summary_message(outcome)
        st.session_state.upload_records = None
        st.rerun()


def _uploaded_picture(upload: Any) -> Optional[str]:
    """Uploaded event picture as a data URL, or None when nothing was uploaded."""
    if upload is None:
        return None
    return image_data_url(upload.getvalue(), upload.type)


def _run_check_in(members_repo: Any, events_repo: Any, event_id: str, payload: str) -> None:
    try:
        result = check_in(members_repo, events_repo, event_id, payload)
    except RepositoryError as e:
        _show_error("Check-in failed", e)
        return
    _ui_log(f"check-in {event_id}: {result.status}")
    st.session_state.scan_message = (result.ok, result.message)
    st.rerun()


def _camera_check_in(members_repo: Any, events_repo: Any, event_id: str) -> None:
    snapshot = st.camera_input("Point the camera at a member QR code", key=f"camera_{event_id}")
    if snapshot is None:
        return
    # the snapshot survives reruns; only act on a new picture
    digest = hashlib.sha1(snapshot.getvalue()).hexdigest()
    seen_key = f"_scanned_{event_id}"
    if st.session_state.get(seen_key) == digest:
        return
    st.session_state[seen_key] = digest
    payload = decode_qr_image(snapshot.getvalue())
    if payload is None:
        st.warning("No QR code found in the picture. Please scan again.")
        return
    _run_check_in(members_repo, events_repo, event_id, payload)


def render_events_tab(members_repo: Any, events_repo: Any) -> None:
    try:
        members = list_members(members_repo)
        events = list_events(events_repo)
    except RepositoryError as e:
        _show_error("Could not load events", e)
        return
    names = {m.id: m.name for m in members}

    with st.expander("➕ New event", expanded=False):
        with st.form("create_event_form", clear_on_submit=True):
            name = st.text_input("Event name")
            description = st.text_area("Description")
            upload = st.file_uploader("Picture", type=EVENT_PICTURE_TYPES)
            picture_url = st.text_input("…or picture URL")
            selected = st.multiselect("Members", options=list(names), format_func=lambda mid: names.get(mid, mid))
            submitted = st.form_submit_button("Create event", type="primary")
        if submitted:
            picture = _uploaded_picture(upload) or picture_url.strip()
            try:
                create_event(events_repo, name, description, picture, selected)
                st.success("Event created")
            except ValueError as e:
                st.error(str(e))
            except RepositoryError as e:
                _show_error("Could not create event", e)

    for event in events:
        with st.expander(f"📅 {event.name} · {len(event.members)} member(s)"):
            if event.picture:
                st.image(event.picture, width=240)
            if event.description:
                st.markdown(event.description)
            attendees = [names.get(mid, mid) for mid in event.members]
            st.caption(", ".join(attendees) if attendees else "No members yet")

            if st.toggle("📷 Scan with camera", key=f"camera_on_{event.id}"):
                _camera_check_in(members_repo, events_repo, event.id)
            with st.form(f"scan_form_{event.id}", clear_on_submit=True):
                payload = st.text_input(
                    "Scanned QR code",
                    placeholder="Name: Jane Doe, Email: jane@example.com",
                    key=f"scan_text_{event.id}",
                )
                scanned = st.form_submit_button("✅ Check in")
            if scanned:
                _run_check_in(members_repo, events_repo, event.id, payload)

            with st.form(f"edit_event_{event.id}"):
                new_name = st.text_input("Event name", value=event.name, key=f"edit_name_{event.id}")
                new_description = st.text_area("Description", value=event.description, key=f"edit_desc_{event.id}")
                new_upload = st.file_uploader("Replace picture", type=EVENT_PICTURE_TYPES, key=f"edit_pic_{event.id}")
                drop_picture = st.checkbox("Remove picture", key=f"drop_pic_{event.id}") if event.picture else False
                edited = st.multiselect(
                    "Members",
                    options=list(names),
                    default=[mid for mid in event.members if mid in names],
                    format_func=lambda mid: names.get(mid, mid),
                    key=f"edit_members_{event.id}",
                )
                saved = st.form_submit_button("💾 Save event")
            if saved:
                changes = {"name": new_name.strip(), "description": new_description, "members": edited}
                new_picture = _uploaded_picture(new_upload)
                if new_picture:
                    changes["picture"] = new_picture
                elif drop_picture:
                    changes["picture"] = ""
                if not changes["name"]:
                    st.error("Event name is required")
                else:
                    try:
                        update_event(events_repo, event.id, **changes)
                    except RepositoryError as e:
                        _show_error(f"Could not update {event.name}", e)
                    else:
                        st.rerun()

            if st.button("🗑️ Delete event", key=f"delete_{event.id}"):
                try:
                    delete_event(events_repo, event.id)
                except RepositoryError as e:
                    _show_error(f"Could not delete {event.name}", e)
                else:
                    st.rerun()


def render_admin_dashboard(members_repo: Any, events_repo: Any, current: Member) -> None:
    st.header("🛠️ Admin dashboard")
    if st.session_state.last_summary:
        st.info(st.session_state.last_summary)
    if st.session_state.scan_message:
        ok, message = st.session_state.scan_message
        (st.success if ok else st.error)(message)
        st.session_state.scan_message = None

    members_tab, upload_tab, events_tab, profile_tab = st.tabs(["Members", "Bulk upload", "Events", "My profile"])
    with members_tab:
        render_members_tab(members_repo, current)
    with upload_tab:
        render_upload_tab(members_repo)
    with events_tab:
        render_events_tab(members_repo, events_repo)
    with profile_tab:
        render_member_dashboard(current)


def main() -> None:
    st.title("DVcheck")
    try:
        members_repo, events_repo = _get_repositories()
    except (ValueError, ImportError) as e:
        _show_error("Could not configure the member store", e)
        return

    current: Optional[Member] = st.session_state.current_member
    with st.sidebar:
        if current is not None:
            st.markdown(f"Signed in as **{current.name}**")
            if st.button("Sign out"):
                st.session_state.current_member = None
                st.rerun()

    if current is None:
        render_sign_in(members_repo)
        return

    try:
        role = resolve_role(members_repo, current.email, RoleFallback(ROLE_FALLBACK_POLICY))
    except RepositoryError as e:
        _show_error("Could not load your account", e)
        return

    if role == "admin":
        render_admin_dashboard(members_repo, events_repo, current)
    else:
        render_member_dashboard(current)


main()
_ui_log("rendered page")
