import pytest

import services
from models import MemberRecord
from qr_codec import encode_payload
from repository import InMemoryRepository, RepositoryError


def _record(name="Jane Doe", email="jane@example.com", **kw):
    return MemberRecord(name=name, email=email, **kw)


class _BrokenRepo(InMemoryRepository):
    """Fails on create for emails containing 'fail'."""

    def create(self, data):
        if "fail" in data["email"]:
            raise RepositoryError("write rejected")
        return super().create(data)


class _OfflineRepo(InMemoryRepository):
    def find(self, field_name, value):
        raise RepositoryError("offline")


def test_create_member_issues_id_password_and_payload():
    repo = InMemoryRepository()
    member = services.create_member(repo, _record(phone_number="555 123 4567"), id_factory=lambda: "HRTEST")
    assert member.unique_id == "HRTEST"
    assert member.record.password == "jane4567"
    assert member.qr_code == "Name: Jane Doe, Email: jane@example.com"
    assert member.last_login is None
    stored = repo.get(member.id)
    assert stored["password"] == "jane4567"
    assert stored["qrCode"] == member.qr_code


def test_create_member_keeps_explicit_password():
    member = services.create_member(InMemoryRepository(), _record(password="chosen"))
    assert member.record.password == "chosen"


def test_bulk_create_continues_after_failures():
    repo = _BrokenRepo()
    records = [_record(email="a@x.com"), _record(email="fail@x.com"), _record(email="c@x.com")]
    result = services.bulk_create_members(repo, records)
    assert result.success == 2
    assert result.failed == 1
    assert result.errors == ["Row 3: write rejected"]
    assert len(repo.list()) == 2


def test_summary_message_truncates_errors():
    result = services.BulkCreateResult(success=1, failed=12, errors=[f"Row {i}: bad" for i in range(2, 14)])
    message = services.summary_message(result)
    assert "Successfully created: 1 users" in message
    assert "Failed to create: 12 users" in message
    assert "Row 11: bad" in message
    assert "Row 12: bad" not in message
    assert message.endswith("... and 2 more errors")


def test_generate_missing_qr_codes():
    repo = InMemoryRepository()
    bare = repo.create({"name": "Old Member", "email": "old@x.com", "role": "member"})
    services.create_member(repo, _record())
    result = services.generate_missing_qr_codes(repo, id_factory=lambda: "HRNEW")
    assert result.success == 1
    doc = repo.get(bare)
    assert doc["qrCode"] == encode_payload("Old Member", "old@x.com")
    assert doc["uniqueId"] == "HRNEW"


def test_search_members():
    repo = InMemoryRepository()
    services.create_member(repo, _record("Jane Doe", "jane@example.com"))
    services.create_member(repo, _record("Bob Ray", "bob@example.com"))
    assert [m.name for m in services.search_members(repo, "jan")] == ["Jane Doe"]
    assert [m.name for m in services.search_members(repo, "BOB@")] == ["Bob Ray"]
    assert len(services.search_members(repo, "")) == 2


def test_check_in_flow():
    members, events = InMemoryRepository(), InMemoryRepository()
    jane = services.create_member(members, _record())
    event = services.create_event(events, "Kickoff", "First meeting")

    first = services.check_in(members, events, event.id, jane.qr_code)
    assert first.ok
    assert first.message == "Successfully added Jane Doe to the event!"
    assert events.get(event.id)["members"] == [jane.id]

    again = services.check_in(members, events, event.id, jane.qr_code)
    assert again.status == "already_checked_in"
    assert again.message == "Jane Doe is already added to this event"
    assert events.get(event.id)["members"] == [jane.id]


def test_check_in_failures():
    members, events = InMemoryRepository(), InMemoryRepository()
    event = services.create_event(events, "Kickoff")
    assert services.check_in(members, events, event.id, "garbage").status == "invalid_code"
    assert services.check_in(members, events, event.id, "Name: Bob, Email: not-an-email").status == "invalid_code"
    unknown = services.check_in(members, events, event.id, encode_payload("Bob", "bob@x.com"))
    assert unknown.status == "member_not_found"
    assert unknown.message == "Member not found: bob@x.com"
    assert services.check_in(members, events, "missing", encode_payload("Bob", "bob@x.com")).status == "event_not_found"


def test_event_crud():
    events = InMemoryRepository()
    with pytest.raises(ValueError):
        services.create_event(events, "  ")
    event = services.create_event(events, "Gala", members=["m1"])
    services.update_event(events, event.id, name="Winter Gala", members=("m1", "m2"))
    updated = services.list_events(events)[0]
    assert updated.name == "Winter Gala"
    assert updated.members == ("m1", "m2")
    with pytest.raises(ValueError):
        services.update_event(events, event.id, location="Hall")
    services.delete_event(events, event.id)
    assert services.list_events(events) == []


def test_sign_in():
    repo = InMemoryRepository()
    services.create_member(repo, _record(phone_number="0612345678"))
    assert services.sign_in(repo, "", "x").error == "Please enter your email address"
    assert services.sign_in(repo, "jane@example.com", " ").error == "Please enter your password"
    assert services.sign_in(repo, "jane", "x").error == "Please enter a valid email address"
    wrong = services.sign_in(repo, "jane@example.com", "wrong")
    assert not wrong.success
    assert wrong.error == "Invalid email or password. Please check your credentials."

    ok = services.sign_in(repo, "jane@example.com", "jane5678")
    assert ok.success
    assert ok.member.last_login
    assert repo.get(ok.member.id)["lastLogin"] == ok.member.last_login


def test_resolve_role_uses_stored_role():
    repo = InMemoryRepository()
    services.create_member(repo, _record(email="boss@x.com", role="admin"))
    assert services.resolve_role(repo, "boss@x.com") == "admin"
    assert services.resolve_role(repo, "stranger@x.com") == "member"


def test_resolve_role_fallback_policies():
    repo = _OfflineRepo()
    assert services.resolve_role(repo, "admin@x.com") == "member"
    assert services.resolve_role(repo, "admin@x.com", services.RoleFallback.EMAIL_HEURISTIC) == "admin"
    assert services.resolve_role(repo, "jane@x.com", services.RoleFallback.EMAIL_HEURISTIC) == "member"
    with pytest.raises(RepositoryError):
        services.resolve_role(repo, "admin@x.com", services.RoleFallback.DENY)


def test_update_member_replaces_fields_and_payload():
    repo = InMemoryRepository()
    member = services.create_member(repo, _record())
    edited = _record(name="Jane Smith", email="jane.smith@example.com", password=member.record.password, year=2)
    services.update_member(repo, member.id, edited)
    reloaded = services.get_member(repo, member.id)
    assert reloaded.record == edited
    assert reloaded.qr_code == "Name: Jane Smith, Email: jane.smith@example.com"
    assert reloaded.unique_id == member.unique_id
    services.delete_member(repo, member.id)
    assert services.get_member(repo, member.id) is None


def test_email_case_is_normalized_for_sign_in_and_check_in():
    members, events = InMemoryRepository(), InMemoryRepository()
    member = services.create_member(members, _record(email=" Jane@Example.com ", phone_number="0612345678"))
    assert member.email == "jane@example.com"
    assert member.record.password == "Jane5678"
    assert members.get(member.id)["email"] == "jane@example.com"

    ok = services.sign_in(members, "JANE@example.COM", "Jane5678")
    assert ok.success
    assert ok.member.id == member.id
    assert services.get_member_by_email(members, "jane@EXAMPLE.com").id == member.id

    event = services.create_event(events, "Kickoff")
    assert services.check_in(members, events, event.id, encode_payload("Jane Doe", "JANE@EXAMPLE.COM")).ok
