import pytest

import repository as repo_mod
from repository import FirestoreRepository, InMemoryRepository, RepositoryError


def test_in_memory_crud():
    repo = InMemoryRepository("users")
    doc_id = repo.create({"name": "Ann", "email": "ann@x.com"})
    assert repo.get(doc_id) == {"id": doc_id, "name": "Ann", "email": "ann@x.com"}

    repo.update(doc_id, {"name": "Anne"})
    assert repo.get(doc_id)["name"] == "Anne"
    assert repo.find("email", "ann@x.com")[0]["id"] == doc_id
    assert repo.find("email", "nobody@x.com") == []

    repo.delete(doc_id)
    assert repo.get(doc_id) is None
    assert repo.list() == []


def test_in_memory_update_missing_document():
    with pytest.raises(RepositoryError):
        InMemoryRepository().update("missing", {"name": "x"})


def test_value_encoding_round_trip():
    data = {"name": "Ann", "year": 3, "score": 1.5, "active": True, "lastLogin": None, "members": ["a", "b"]}
    fields = repo_mod.encode_fields({**data, "id": "ignored"})
    assert "id" not in fields
    assert fields["year"] == {"integerValue": "3"}
    assert fields["active"] == {"booleanValue": True}
    assert repo_mod.decode_fields(fields) == data


class _FakeResp:
    def __init__(self, status_code, payload=None):
        self.status_code = status_code
        self._payload = payload
        self.text = ""

    def json(self):
        return self._payload


class _FakeSession:
    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        return self.responses.pop(0)


def _repo(responses, **kw):
    session = _FakeSession(responses)
    repo = FirestoreRepository(project_id="demo", collection="users", api_key="k", session=session, **kw)
    return repo, session


def test_firestore_create_returns_document_id():
    repo, session = _repo([_FakeResp(200, {"name": "projects/demo/databases/(default)/documents/users/abc123"})])
    assert repo.create({"name": "Ann"}) == "abc123"
    method, url, kwargs = session.calls[0]
    assert method == "POST"
    assert url.endswith("/documents/users")
    assert kwargs["params"]["key"] == "k"
    assert kwargs["json"] == {"fields": {"name": {"stringValue": "Ann"}}}


def test_firestore_get_missing_returns_none():
    repo, _ = _repo([_FakeResp(404, {})])
    assert repo.get("nope") is None


def test_firestore_list_follows_pages():
    doc = lambda i: {"name": f"projects/demo/databases/(default)/documents/users/u{i}", "fields": {"name": {"stringValue": f"M{i}"}}}
    repo, session = _repo([
        _FakeResp(200, {"documents": [doc(1)], "nextPageToken": "t"}),
        _FakeResp(200, {"documents": [doc(2)]}),
    ])
    assert repo.list() == [{"id": "u1", "name": "M1"}, {"id": "u2", "name": "M2"}]
    assert session.calls[1][2]["params"]["pageToken"] == "t"


def test_firestore_find_skips_metadata_entries():
    repo, session = _repo([
        _FakeResp(200, [
            {"readTime": "2026-01-01T00:00:00Z"},
            {"document": {"name": "x/users/u9", "fields": {"email": {"stringValue": "a@b.com"}}}},
        ])
    ])
    assert repo.find("email", "a@b.com") == [{"id": "u9", "email": "a@b.com"}]
    body = session.calls[0][2]["json"]["structuredQuery"]
    assert body["where"]["fieldFilter"]["value"] == {"stringValue": "a@b.com"}


def test_firestore_update_sends_mask():
    repo, session = _repo([_FakeResp(200, {})])
    repo.update("u1", {"qrCode": "Name: A, Email: a@b.com"})
    method, _, kwargs = session.calls[0]
    assert method == "PATCH"
    assert kwargs["params"]["updateMask.fieldPaths"] == ["qrCode"]


def test_firestore_retries_transient_errors(monkeypatch):
    monkeypatch.setattr(repo_mod.time, "sleep", lambda *_a, **_k: None)
    repo, session = _repo([_FakeResp(503), _FakeResp(200, {"name": "x/users/ok"})], max_attempts=2)
    assert repo.create({"name": "Ann"}) == "ok"
    assert len(session.calls) == 2


def test_firestore_error_raises_repository_error(monkeypatch):
    monkeypatch.setattr(repo_mod.time, "sleep", lambda *_a, **_k: None)
    repo, _ = _repo([_FakeResp(403)], max_attempts=1)
    with pytest.raises(RepositoryError):
        repo.delete("u1")


def test_firestore_requires_project():
    with pytest.raises(ValueError):
        FirestoreRepository(project_id="", collection="users", session=_FakeSession([]))
