"""
Document repositories for members ("users") and events.

Documents are plain dicts; `list`/`get`/`find` return them with an `id` key.
Two backends:
- InMemoryRepository: process-local, used by tests and by the UI when no
  Firestore configuration is present.
- FirestoreRepository: Firestore REST v1 API over requests.
"""

import random
import time
import uuid
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from config import (
    FIRESTORE_COLLECTION_EVENTS,
    FIRESTORE_COLLECTION_USERS,
    FIRESTORE_MAX_ATTEMPTS,
    FIRESTORE_TIMEOUT_S,
)


class RepositoryError(RuntimeError):
    """Backend failure (network, HTTP error, malformed response)."""


class InMemoryRepository:
    """Dict-backed repository. Returned documents are copies."""

    def __init__(self, name: str = "documents"):
        self.name = name
        self._docs: Dict[str, Dict[str, Any]] = {}

    def list(self) -> List[Dict[str, Any]]:
        return [{**doc, "id": doc_id} for doc_id, doc in self._docs.items()]

    def get(self, doc_id: str) -> Optional[Dict[str, Any]]:
        doc = self._docs.get(doc_id)
        return None if doc is None else {**doc, "id": doc_id}

    def create(self, data: Dict[str, Any]) -> str:
        doc_id = uuid.uuid4().hex[:20]
        self._docs[doc_id] = {k: v for k, v in data.items() if k != "id"}
        return doc_id

    def update(self, doc_id: str, changes: Dict[str, Any]) -> None:
        if doc_id not in self._docs:
            raise RepositoryError(f"No document '{doc_id}' in {self.name}")
        self._docs[doc_id].update({k: v for k, v in changes.items() if k != "id"})

    def delete(self, doc_id: str) -> None:
        self._docs.pop(doc_id, None)

    def find(self, field_name: str, value: Any) -> List[Dict[str, Any]]:
        return [doc for doc in self.list() if doc.get(field_name) == value]


# --- Firestore value encoding ---

def encode_value(v: Any) -> Dict[str, Any]:
    if v is None:
        return {"nullValue": None}
    if isinstance(v, bool):
        return {"booleanValue": v}
    if isinstance(v, int):
        return {"integerValue": str(v)}
    if isinstance(v, float):
        return {"doubleValue": v}
    if isinstance(v, (list, tuple)):
        return {"arrayValue": {"values": [encode_value(x) for x in v]}}
    if isinstance(v, dict):
        return {"mapValue": {"fields": encode_fields(v)}}
    return {"stringValue": str(v)}


def encode_fields(data: Dict[str, Any]) -> Dict[str, Any]:
    return {k: encode_value(v) for k, v in data.items() if k != "id"}


def decode_value(value: Dict[str, Any]) -> Any:
    if "nullValue" in value:
        return None
    if "booleanValue" in value:
        return bool(value["booleanValue"])
    if "integerValue" in value:
        return int(value["integerValue"])
    if "doubleValue" in value:
        return float(value["doubleValue"])
    if "arrayValue" in value:
        return [decode_value(x) for x in value["arrayValue"].get("values", [])]
    if "mapValue" in value:
        return decode_fields(value["mapValue"].get("fields", {}))
    for key in ("stringValue", "timestampValue", "referenceValue"):
        if key in value:
            return value[key]
    raise RepositoryError(f"Unsupported Firestore value: {sorted(value)}")


def decode_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    return {k: decode_value(v) for k, v in fields.items()}


def decode_document(doc: Dict[str, Any]) -> Dict[str, Any]:
    out = decode_fields(doc.get("fields", {}))
    out["id"] = str(doc.get("name", "")).rsplit("/", 1)[-1]
    return out


class FirestoreRepository:
    """
    One Firestore collection over the REST API.

    Auth: an API key (sent as ?key=) and/or a Firebase ID token (Bearer header).
    Pass `session` to reuse a requests.Session (or inject a fake in tests).
    """

    def __init__(
        self,
        *,
        project_id: str,
        collection: str,
        api_key: Optional[str] = None,
        id_token: Optional[str] = None,
        session: Any = None,
        timeout_s: int = FIRESTORE_TIMEOUT_S,
        max_attempts: int = FIRESTORE_MAX_ATTEMPTS,
    ):
        project_id = (project_id or "").strip()
        collection = (collection or "").strip()
        if not project_id or not collection:
            raise ValueError("Firestore requires project_id and collection.")
        if session is None:
            try:
                import requests  # type: ignore
            except Exception as e:  # pragma: no cover
                raise ImportError(
                    "Firestore integration requires 'requests'. Install it with:\n"
                    "  pip install requests"
                ) from e
            session = requests.Session()
        self.collection = collection
        self.base_url = f"https://firestore.googleapis.com/v1/projects/{quote(project_id, safe='')}/databases/(default)/documents"
        self.api_key = (api_key or "").strip() or None
        self.id_token = (id_token or "").strip() or None
        self.session = session
        self.timeout_s = timeout_s
        self.max_attempts = max_attempts

    def _doc_url(self, doc_id: str) -> str:
        return f"{self.base_url}/{self.collection}/{quote(doc_id, safe='')}"

    def _request(self, method: str, url: str, *, params=None, json=None, ok=(200,)):
        headers = {"Accept": "application/json", "User-Agent": "dvcheck/1.0"}
        if self.id_token:
            headers["Authorization"] = f"Bearer {self.id_token}"
        params = dict(params or {})
        if self.api_key:
            params["key"] = self.api_key

        last_exc: Optional[Exception] = None
        resp = None
        for attempt in range(max(1, int(self.max_attempts))):
            try:
                resp = self.session.request(
                    method,
                    url,
                    params=params or None,
                    json=json,
                    headers=headers,
                    timeout=(10, max(10, int(self.timeout_s))),
                )
            except Exception as e:
                # Connection errors/timeouts: retry with backoff
                last_exc = e
                resp = None
                time.sleep(min(6.0, 0.6 * (2**attempt) + random.random() * 0.25))
                continue
            if resp.status_code in (429, 500, 502, 503) and attempt + 1 < self.max_attempts:
                time.sleep(min(6.0, 0.6 * (2**attempt) + random.random() * 0.25))
                continue
            break

        if resp is None:
            raise RepositoryError(f"Firestore request failed after retries: {last_exc}") from last_exc
        if resp.status_code not in ok:
            snippet = (getattr(resp, "text", "") or "")[:500]
            raise RepositoryError(
                f"Firestore {method} {self.collection} failed (status: {resp.status_code}). "
                f"Body (first 500 chars): {snippet}"
            )
        return resp

    def list(self) -> List[Dict[str, Any]]:
        docs: List[Dict[str, Any]] = []
        page_token = None
        while True:
            params = {"pageSize": 300}
            if page_token:
                params["pageToken"] = page_token
            data = self._request("GET", f"{self.base_url}/{self.collection}", params=params).json()
            docs.extend(decode_document(d) for d in data.get("documents", []))
            page_token = data.get("nextPageToken")
            if not page_token:
                return docs

    def get(self, doc_id: str) -> Optional[Dict[str, Any]]:
        resp = self._request("GET", self._doc_url(doc_id), ok=(200, 404))
        if resp.status_code == 404:
            return None
        return decode_document(resp.json())

    def create(self, data: Dict[str, Any]) -> str:
        resp = self._request(
            "POST", f"{self.base_url}/{self.collection}", json={"fields": encode_fields(data)}
        )
        name = resp.json().get("name")
        if not name:
            raise RepositoryError("Firestore create returned no document name.")
        return str(name).rsplit("/", 1)[-1]

    def update(self, doc_id: str, changes: Dict[str, Any]) -> None:
        fields = encode_fields(changes)
        params = {"updateMask.fieldPaths": list(fields), "currentDocument.exists": "true"}
        self._request("PATCH", self._doc_url(doc_id), params=params, json={"fields": fields})

    def delete(self, doc_id: str) -> None:
        self._request("DELETE", self._doc_url(doc_id))

    def find(self, field_name: str, value: Any) -> List[Dict[str, Any]]:
        body = {
            "structuredQuery": {
                "from": [{"collectionId": self.collection}],
                "where": {
                    "fieldFilter": {
                        "field": {"fieldPath": field_name},
                        "op": "EQUAL",
                        "value": encode_value(value),
                    }
                },
            }
        }
        data = self._request("POST", f"{self.base_url}:runQuery", json=body).json()
        if not isinstance(data, list):
            raise RepositoryError(f"Unexpected Firestore query response type: {type(data).__name__}")
        # Entries without "document" carry only read metadata
        return [decode_document(entry["document"]) for entry in data if "document" in entry]


def firestore_repositories(settings: Dict[str, Any], session: Any = None):
    """
    Build (members, events) Firestore repositories from a settings mapping
    with keys project_id, api_key, id_token (optional).
    """
    common = {
        "project_id": settings.get("project_id", ""),
        "api_key": settings.get("api_key"),
        "id_token": settings.get("id_token"),
        "session": session,
    }
    return (
        FirestoreRepository(collection=FIRESTORE_COLLECTION_USERS, **common),
        FirestoreRepository(collection=FIRESTORE_COLLECTION_EVENTS, **common),
    )
