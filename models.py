"""
Plain data types shared by the loaders, validator, services and UI.

Records are immutable; an edit builds a new record (dataclasses.replace) and
sends it wholesale to the repository.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple


@dataclass(frozen=True)
class MemberRecord:
    """Canonical member fields after alias resolution and defaults."""

    name: str
    email: str
    password: str = ""
    phone_number: Optional[str] = None
    school: Optional[str] = None
    year: Optional[int] = None
    department: Optional[str] = None
    role: str = "member"
    # Raw Year cell when it could not be parsed; reported by the validator.
    year_text: Optional[str] = field(default=None, compare=False)

    def to_document(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "email": self.email,
            "password": self.password,
            "phoneNumber": self.phone_number,
            "school": self.school,
            "year": self.year,
            "department": self.department,
            "role": self.role,
        }


@dataclass
class ValidationReport:
    """Row-indexed validation errors. Row 2 is the first data row."""

    errors: List[Tuple[int, str]] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    def add(self, row: int, message: str) -> None:
        self.errors.append((row, message))

    def messages(self) -> List[str]:
        return [f"Row {row}: {message}" for row, message in self.errors]


@dataclass(frozen=True)
class Member:
    """A persisted member: the record plus store-assigned fields."""

    id: str
    record: MemberRecord
    unique_id: str = ""
    qr_code: str = ""
    created_at: str = ""
    last_login: Optional[str] = None

    @property
    def name(self) -> str:
        return self.record.name

    @property
    def email(self) -> str:
        return self.record.email

    @property
    def role(self) -> str:
        return self.record.role

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Member":
        year = doc.get("year")
        record = MemberRecord(
            name=doc.get("name") or "",
            email=doc.get("email") or "",
            password=doc.get("password") or "",
            phone_number=doc.get("phoneNumber") or None,
            school=doc.get("school") or None,
            year=int(year) if year not in (None, "") else None,
            department=doc.get("department") or None,
            role=doc.get("role") or "member",
        )
        return cls(
            id=str(doc.get("id", "")),
            record=record,
            unique_id=doc.get("uniqueId") or "",
            qr_code=doc.get("qrCode") or "",
            created_at=doc.get("createdAt") or "",
            last_login=doc.get("lastLogin"),
        )


@dataclass(frozen=True)
class Event:
    id: str
    name: str
    description: str = ""
    picture: str = ""
    members: Tuple[str, ...] = ()
    created_at: str = ""
    updated_at: Optional[str] = None

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Event":
        return cls(
            id=str(doc.get("id", "")),
            name=doc.get("name") or "",
            description=doc.get("description") or "",
            picture=doc.get("picture") or "",
            members=tuple(doc.get("members") or ()),
            created_at=doc.get("createdAt") or "",
            updated_at=doc.get("updatedAt"),
        )
