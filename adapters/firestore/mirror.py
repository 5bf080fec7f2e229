"""
Firestore-backed remote mirror using the Firestore REST API.

This adapts the generic RemoteMirror contract to Firebase:
- Anonymous sign-in through the Identity Toolkit ``accounts:signUp`` endpoint
- Documents encoded as typed Firestore values (``stringValue``, ``timestampValue``)
- Paged listing that follows ``nextPageToken``
- Blocking ``requests`` calls run in a worker thread so the event loop stays free

Key Firestore concepts:
- Document name: ``projects/{project}/databases/(default)/documents/{collection}/{id}``
- ID token: short-lived bearer token returned by sign-in, sent on every call
"""

import asyncio
import time
from typing import Any

import requests
from pydantic import ValidationError

from skincare.config import RemoteMirrorConfig
from skincare.domain.models import EvaluationEntry, RemoteDocument, isoformat_utc, parse_timestamp
from skincare.services.base import Result, logger
from skincare.services.remote_mirror import RemoteMirrorError, mirror_payload

PAGE_SIZE = 300
TOKEN_REFRESH_MARGIN_SECONDS = 60


def encode_fields(payload: dict[str, str]) -> dict[str, dict[str, str]]:
    """Encode a flat payload as Firestore typed values."""
    fields: dict[str, dict[str, str]] = {}
    for name, value in payload.items():
        if name == "createdAt":
            fields[name] = {"timestampValue": isoformat_utc(parse_timestamp(value))}
        else:
            fields[name] = {"stringValue": value}
    return fields


def decode_value(value: dict[str, Any]) -> Any:
    """Decode one Firestore typed value into a plain Python value."""
    if "stringValue" in value:
        return value["stringValue"]
    if "timestampValue" in value:
        raw = value["timestampValue"]
        try:
            return isoformat_utc(parse_timestamp(raw))
        except ValueError:
            return raw
    if "integerValue" in value:
        return int(value["integerValue"])
    if "doubleValue" in value:
        return float(value["doubleValue"])
    if "booleanValue" in value:
        return bool(value["booleanValue"])
    if "nullValue" in value:
        return None
    return None


def document_id_from_name(name: str) -> str:
    return name.rsplit("/", 1)[-1]


def json_object(response: requests.Response) -> dict[str, Any]:
    """Response body as a JSON object; any other shape is a remote error."""
    body = response.json()
    if not isinstance(body, dict):
        raise RemoteMirrorError(f"Unexpected response body: {type(body).__name__}")
    return body


class FirestoreMirror:
    """
    Remote mirror talking to a Firestore collection over HTTPS.

    Every public method returns a Result; transport and HTTP errors never
    propagate to the caller.
    """

    def __init__(self, config: RemoteMirrorConfig, session: requests.Session | None = None) -> None:
        if not config.project_id or not config.api_key:
            raise ValueError("FirestoreMirror requires a project id and an API key")
        self.config = config
        self.session = session or requests.Session()
        self.logger = logger.bind(
            component="firestore_mirror",
            project_id=config.project_id,
            collection=config.collection,
        )
        self._id_token: str | None = None
        self._token_expires_at = 0.0

    @property
    def collection_url(self) -> str:
        return (
            f"{self.config.endpoint}/projects/{self.config.project_id}"
            f"/databases/(default)/documents/{self.config.collection}"
        )

    # Authentication
    def _sign_in(self) -> str:
        response = self.session.post(
            f"{self.config.auth_endpoint}/accounts:signUp",
            params={"key": self.config.api_key},
            json={"returnSecureToken": True},
            timeout=self.config.timeout_seconds,
        )
        response.raise_for_status()
        body = json_object(response)
        token = body.get("idToken")
        if not token:
            raise RemoteMirrorError("Anonymous sign-in returned no idToken")

        self._id_token = token
        self._token_expires_at = time.monotonic() + float(body.get("expiresIn", 3600))
        self.logger.info("firestore_signed_in_anonymously")
        return token

    def _token(self) -> str:
        if (
            self._id_token is None
            or time.monotonic() >= self._token_expires_at - TOKEN_REFRESH_MARGIN_SECONDS
        ):
            return self._sign_in()
        return self._id_token

    def _request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        """Authenticated request; signs in again once if the token was rejected."""
        params = {"key": self.config.api_key, **kwargs.pop("params", {})}
        for attempt in range(2):
            response = self.session.request(
                method,
                url,
                params=params,
                headers={"Authorization": f"Bearer {self._token()}"},
                timeout=self.config.timeout_seconds,
                **kwargs,
            )
            if response.status_code == 401 and attempt == 0:
                self.logger.warning("firestore_token_rejected")
                self._id_token = None
                continue
            response.raise_for_status()
            return response
        raise RemoteMirrorError("Firestore rejected the refreshed token")  # pragma: no cover

    # Blocking operations, executed in a worker thread
    def _list_all_sync(self) -> list[RemoteDocument]:
        documents: list[RemoteDocument] = []
        page_token: str | None = None
        while True:
            params: dict[str, Any] = {"pageSize": PAGE_SIZE}
            if page_token:
                params["pageToken"] = page_token
            body = json_object(self._request("GET", self.collection_url, params=params))

            raw_documents = body.get("documents", [])
            if not isinstance(raw_documents, list):
                raise RemoteMirrorError("Listing returned a non-list documents field")
            for raw in raw_documents:
                document = self._decode_document(raw)
                if document is not None:
                    documents.append(document)

            page_token = body.get("nextPageToken")
            if not page_token:
                return documents

    def _create_sync(self, entry: EvaluationEntry) -> str:
        body = json_object(
            self._request(
                "POST", self.collection_url, json={"fields": encode_fields(mirror_payload(entry))}
            )
        )
        name = body.get("name")
        if not name or not isinstance(name, str):
            raise RemoteMirrorError("Firestore create returned no document name")
        return document_id_from_name(name)

    def _delete_sync(self, document_id: str) -> None:
        self._request("DELETE", f"{self.collection_url}/{document_id}")

    def _decode_document(self, raw: Any) -> RemoteDocument | None:
        fields = raw.get("fields", {}) if isinstance(raw, dict) else None
        if not isinstance(fields, dict) or not isinstance(raw.get("name", ""), str):
            self.logger.warning("firestore_document_malformed")
            return None

        document_id = document_id_from_name(raw.get("name", ""))
        try:
            data = {
                name: decode_value(value)
                for name, value in fields.items()
                if isinstance(value, dict)
            }
            return RemoteDocument.model_validate({**data, "remoteId": document_id})
        except ValidationError as e:
            self.logger.warning(
                "firestore_document_invalid", document_id=document_id, errors=e.error_count()
            )
            return None
        except (ValueError, TypeError) as e:
            self.logger.warning(
                "firestore_document_undecodable", document_id=document_id, error=str(e)
            )
            return None

    # RemoteMirror protocol
    async def list_all(self) -> Result[list[RemoteDocument], Exception]:
        try:
            documents = await asyncio.to_thread(self._list_all_sync)
            self.logger.info("mirror_documents_listed", count=len(documents))
            return Result.ok(documents)
        except (requests.RequestException, RemoteMirrorError, ValueError, TypeError) as e:
            self.logger.error("mirror_list_failed", error=str(e))
            return Result.err(e)

    async def create(self, entry: EvaluationEntry) -> Result[str, Exception]:
        try:
            document_id = await asyncio.to_thread(self._create_sync, entry)
            self.logger.info("mirror_document_created", entry_id=entry.id, document_id=document_id)
            return Result.ok(document_id)
        except (requests.RequestException, RemoteMirrorError, ValueError, TypeError) as e:
            self.logger.error("mirror_create_failed", entry_id=entry.id, error=str(e))
            return Result.err(e)

    async def delete(self, document_id: str) -> Result[None, Exception]:
        try:
            await asyncio.to_thread(self._delete_sync, document_id)
            self.logger.info("mirror_document_deleted", document_id=document_id)
            return Result.ok(None)
        except (requests.RequestException, RemoteMirrorError, ValueError, TypeError) as e:
            self.logger.error("mirror_delete_failed", document_id=document_id, error=str(e))
            return Result.err(e)

    def close(self) -> None:
        self.session.close()
