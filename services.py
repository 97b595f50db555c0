"""
Member and event workflows on top of the repositories.

The pure helpers (utils, qr_codec, data_loaders, validation) do no I/O; this
module is where records meet the store. Batch operations collect per-item
failures and keep going.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, List, Optional

from config import SUMMARY_MAX_ERRORS
from models import Event, Member, MemberRecord
from qr_codec import DecodeFailure, decode_payload, encode_payload
from repository import RepositoryError
from utils import derive_password, generate_unique_id, is_valid_email, normalize_email


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# --- Members ---

def create_member(
    repo: Any,
    record: MemberRecord,
    *,
    id_factory: Callable[[], str] = generate_unique_id,
) -> Member:
    """Persist a new member with a default password, unique ID and QR payload."""
    if not record.password.strip():
        record = replace(record, password=derive_password(record.email.strip(), record.phone_number))
    # the default password is derived from the address as typed
    record = replace(record, email=normalize_email(record.email))
    unique_id = id_factory()
    created_at = _now_iso()
    doc = {
        **record.to_document(),
        "uniqueId": unique_id,
        "qrCode": encode_payload(record.name, record.email),
        "createdAt": created_at,
        "lastLogin": None,
    }
    doc_id = repo.create(doc)
    return Member.from_document({**doc, "id": doc_id})


def list_members(repo: Any) -> List[Member]:
    members = [Member.from_document(d) for d in repo.list()]
    return sorted(members, key=lambda m: m.created_at, reverse=True)


def get_member(repo: Any, member_id: str) -> Optional[Member]:
    doc = repo.get(member_id)
    return None if doc is None else Member.from_document(doc)


def get_member_by_email(repo: Any, email: str) -> Optional[Member]:
    docs = repo.find("email", normalize_email(email))
    return Member.from_document(docs[0]) if docs else None


def update_member(repo: Any, member_id: str, record: MemberRecord) -> None:
    """Replace a member's fields; the QR payload follows the new name/email."""
    record = replace(record, email=normalize_email(record.email))
    repo.update(
        member_id,
        {
            **record.to_document(),
            "qrCode": encode_payload(record.name, record.email),
            "updatedAt": _now_iso(),
        },
    )


def delete_member(repo: Any, member_id: str) -> None:
    repo.delete(member_id)


def search_members(repo: Any, term: str) -> List[Member]:
    """Case-insensitive name or email substring search."""
    needle = (term or "").strip().lower()
    members = list_members(repo)
    if not needle:
        return members
    return [m for m in members if needle in m.name.lower() or needle in m.email.lower()]


# --- Bulk import ---

@dataclass
class BulkCreateResult:
    success: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)


def bulk_create_members(
    repo: Any,
    records: Iterable[MemberRecord],
    *,
    id_factory: Callable[[], str] = generate_unique_id,
) -> BulkCreateResult:
    """Create each record independently; a failing row does not stop the batch."""
    result = BulkCreateResult()
    for i, record in enumerate(records):
        row_number = i + 2  # header is row 1
        try:
            create_member(repo, record, id_factory=id_factory)
            result.success += 1
        except Exception as e:
            result.failed += 1
            result.errors.append(f"Row {row_number}: {str(e) or 'Failed to create user'}")
    return result


def summary_message(result: BulkCreateResult) -> str:
    lines = [
        "Bulk creation completed!",
        "",
        f"Successfully created: {result.success} users",
        f"Failed to create: {result.failed} users",
    ]
    if result.errors:
        lines += ["", "Errors:"] + result.errors[:SUMMARY_MAX_ERRORS]
        hidden = len(result.errors) - SUMMARY_MAX_ERRORS
        if hidden > 0:
            lines.append(f"... and {hidden} more errors")
    return "\n".join(lines)


def generate_missing_qr_codes(
    repo: Any,
    *,
    id_factory: Callable[[], str] = generate_unique_id,
) -> BulkCreateResult:
    """Issue a unique ID and QR payload for members that lack one."""
    result = BulkCreateResult()
    for member in list_members(repo):
        if member.qr_code:
            continue
        try:
            changes = {"qrCode": encode_payload(member.name, member.email)}
            if not member.unique_id:
                changes["uniqueId"] = id_factory()
            repo.update(member.id, changes)
            result.success += 1
        except Exception as e:
            result.failed += 1
            result.errors.append(f"{member.name}: {e}")
    return result


# --- Events ---

def create_event(
    repo: Any,
    name: str,
    description: str = "",
    picture: str = "",
    members: Iterable[str] = (),
) -> Event:
    name = (name or "").strip()
    if not name:
        raise ValueError("Event name is required")
    now = _now_iso()
    doc = {
        "name": name,
        "description": description,
        "picture": picture,
        "members": list(members),
        "createdAt": now,
        "updatedAt": now,
    }
    doc_id = repo.create(doc)
    return Event.from_document({**doc, "id": doc_id})


def list_events(repo: Any) -> List[Event]:
    events = [Event.from_document(d) for d in repo.list()]
    return sorted(events, key=lambda e: e.created_at, reverse=True)


def update_event(repo: Any, event_id: str, **changes: Any) -> None:
    allowed = {"name", "description", "picture", "members"}
    unknown = set(changes) - allowed
    if unknown:
        raise ValueError(f"Unknown event fields: {sorted(unknown)}")
    if "members" in changes:
        changes["members"] = list(changes["members"])
    repo.update(event_id, {**changes, "updatedAt": _now_iso()})


def delete_event(repo: Any, event_id: str) -> None:
    repo.delete(event_id)


@dataclass(frozen=True)
class CheckInResult:
    status: str  # checked_in | already_checked_in | member_not_found | event_not_found | invalid_code
    message: str
    member: Optional[Member] = None

    @property
    def ok(self) -> bool:
        return self.status == "checked_in"


def check_in(members_repo: Any, events_repo: Any, event_id: str, payload: str) -> CheckInResult:
    """Add the member encoded in a scanned QR payload to an event."""
    decoded = decode_payload(payload)
    if isinstance(decoded, DecodeFailure):
        return CheckInResult("invalid_code", f"{decoded.reason}. Please scan again.")

    event_doc = events_repo.get(event_id)
    if event_doc is None:
        return CheckInResult("event_not_found", f"Event not found: {event_id}")
    event = Event.from_document(event_doc)

    member = get_member_by_email(members_repo, decoded.email)
    if member is None:
        return CheckInResult("member_not_found", f"Member not found: {decoded.email}")
    if member.id in event.members:
        return CheckInResult("already_checked_in", f"{member.name} is already added to this event", member)

    update_event(events_repo, event.id, members=[*event.members, member.id])
    return CheckInResult("checked_in", f"Successfully added {member.name} to the event!", member)


# --- Sign-in ---

class RoleFallback(enum.Enum):
    """What resolve_role does when the member store cannot be reached."""

    MEMBER = "member"  # least privilege
    DENY = "deny"  # re-raise the store error
    EMAIL_HEURISTIC = "email_heuristic"  # legacy: 'admin' anywhere in the address


def resolve_role(repo: Any, email: str, policy: RoleFallback = RoleFallback.MEMBER) -> str:
    try:
        member = get_member_by_email(repo, email)
    except RepositoryError:
        if policy is RoleFallback.DENY:
            raise
        if policy is RoleFallback.EMAIL_HEURISTIC and "admin" in (email or ""):
            return "admin"
        return "member"
    return member.role if member is not None else "member"


@dataclass(frozen=True)
class SignInResult:
    success: bool
    member: Optional[Member] = None
    error: Optional[str] = None


def sign_in(repo: Any, email: str, password: str) -> SignInResult:
    """Check credentials against the stored member record and stamp lastLogin."""
    if not email or not email.strip():
        return SignInResult(False, error="Please enter your email address")
    if not password or not password.strip():
        return SignInResult(False, error="Please enter your password")
    email = email.strip()
    if not is_valid_email(email):
        return SignInResult(False, error="Please enter a valid email address")

    member = get_member_by_email(repo, email)
    if member is None or member.record.password != password:
        return SignInResult(False, error="Invalid email or password. Please check your credentials.")

    last_login = _now_iso()
    repo.update(member.id, {"lastLogin": last_login})
    return SignInResult(True, member=replace(member, last_login=last_login))
