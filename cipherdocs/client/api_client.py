"""
CipherDocs API Client
Talks to the durable store over HTTP with requests.

Implements the collaborator protocols used by the client core:
KeyRecordStore, SearchKeyMaterialStore, DocumentStore and JobStore.
Blocking calls run in a worker thread so the event loop stays free.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

import requests

from cipherdocs.core.config import settings
from cipherdocs.core.errors import KeyRecordExistsError, StoreError
from cipherdocs.models.document import (
    DocumentCreate,
    DocumentResponse,
    DocumentSummary,
    VectorSearchRequest,
    VectorSearchResponse,
)
from cipherdocs.models.keys import KeyRecordCreate, KeyRecordResponse, PasswordWrapUpdate
from cipherdocs.models.processing import (
    ContentType,
    JobStatusResponse,
    ProcessingStartResponse,
    ProgressEvent,
)

logger = logging.getLogger(__name__)

USER_HEADER = "X-User-Id"


class ApiClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        user_id: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: Optional[float] = None,
    ):
        self.base_url = (base_url or settings.API_BASE_URL).rstrip("/")
        self.user_id = user_id
        self.session = session or requests.Session()
        self.timeout = timeout or settings.REQUEST_TIMEOUT_SECONDS

    # ==================== Transport ====================

    def _call(self, method: str, path: str, user_id: Optional[str] = None, **kwargs):
        user_id = user_id or self.user_id
        if not user_id:
            raise StoreError("No user is signed in")
        headers = {USER_HEADER: user_id}
        try:
            return self.session.request(
                method,
                f"{self.base_url}{settings.API_PREFIX}{path}",
                headers=headers,
                timeout=self.timeout,
                **kwargs,
            )
        except requests.RequestException as e:
            raise StoreError(f"Request to {path} failed: {e}") from e

    async def _request(self, method: str, path: str, user_id: Optional[str] = None, **kwargs):
        return await asyncio.to_thread(self._call, method, path, user_id, **kwargs)

    @staticmethod
    def _raise_for_status(response, action: str) -> None:
        if 200 <= response.status_code < 300:
            return
        try:
            detail = response.json().get("detail", response.text)
        except ValueError:
            detail = response.text
        raise StoreError(f"Failed to {action}: {detail}", status_code=response.status_code)

    # ==================== Key Records ====================

    async def fetch_key_record(self, user_id: str) -> Optional[KeyRecordResponse]:
        response = await self._request("GET", "/keys", user_id)
        if response.status_code == 404:
            return None
        self._raise_for_status(response, "fetch encryption keys")
        return KeyRecordResponse.model_validate(response.json())

    async def store_key_record(self, user_id: str, record: KeyRecordCreate) -> None:
        response = await self._request("POST", "/keys", user_id, json=record.model_dump())
        if response.status_code == 409:
            raise KeyRecordExistsError()
        self._raise_for_status(response, "store encryption keys")

    async def update_password_wrap(self, user_id: str, update: PasswordWrapUpdate) -> None:
        response = await self._request("PUT", "/keys/password", user_id, json=update.model_dump())
        self._raise_for_status(response, "update password key")

    # ==================== Search Key Material ====================

    async def fetch_search_key_material(self, user_id: str) -> Optional[str]:
        response = await self._request("GET", "/keys/search-material", user_id)
        if response.status_code == 404:
            return None
        self._raise_for_status(response, "fetch search keys")
        return response.json().get("encrypted_search_key_material")

    async def store_search_key_material(self, user_id: str, encrypted: str) -> None:
        response = await self._request(
            "PUT", "/keys/search-material", user_id, json={"encrypted_search_key_material": encrypted}
        )
        self._raise_for_status(response, "store search keys")

    async def clear_search_key_material(self, user_id: str) -> None:
        response = await self._request("DELETE", "/keys/search-material", user_id)
        if response.status_code == 404:
            return
        self._raise_for_status(response, "clear search keys")

    # ==================== Documents ====================

    async def create_document(self, payload: DocumentCreate) -> str:
        response = await self._request("POST", "/documents", json=payload.model_dump(by_alias=True, mode="json"))
        self._raise_for_status(response, "upload document")
        return response.json()["documentId"]

    async def list_documents(self, name: Optional[str] = None, project_id: Optional[str] = None) -> List[DocumentSummary]:
        params: Dict[str, Any] = {}
        if name is not None:
            params["name"] = name
        if project_id is not None:
            params["project_id"] = project_id
        response = await self._request("GET", "/documents", params=params)
        self._raise_for_status(response, "list documents")
        return [DocumentSummary.model_validate(item) for item in response.json()["documents"]]

    async def get_document(self, document_id: str) -> Optional[DocumentResponse]:
        response = await self._request("GET", f"/documents/{document_id}")
        if response.status_code == 404:
            return None
        self._raise_for_status(response, "fetch document")
        return DocumentResponse.model_validate(response.json())

    async def delete_document(self, document_id: str) -> bool:
        response = await self._request("DELETE", f"/documents/{document_id}")
        if response.status_code == 404:
            return False
        self._raise_for_status(response, "delete document")
        return True

    async def search_vector(self, request: VectorSearchRequest) -> VectorSearchResponse:
        response = await self._request(
            "POST", "/search/vector", json=request.model_dump(by_alias=True, exclude_none=True)
        )
        self._raise_for_status(response, "search documents")
        return VectorSearchResponse.model_validate(response.json())

    # ==================== Processing Jobs ====================

    async def start_job(self, file_name: Optional[str] = None, content_type: ContentType = ContentType.DOCUMENT) -> str:
        response = await self._request(
            "POST", "/processing/start", json={"fileName": file_name, "contentType": content_type.value}
        )
        self._raise_for_status(response, "start processing job")
        return ProcessingStartResponse.model_validate(response.json()).job_id

    async def update_progress(self, event: ProgressEvent) -> None:
        response = await self._request(
            "POST", "/processing/progress", json=event.model_dump(by_alias=True, mode="json")
        )
        self._raise_for_status(response, "update progress")

    async def get_job_status(self, job_id: str) -> Optional[JobStatusResponse]:
        response = await self._request("GET", f"/processing/status/{job_id}")
        if response.status_code == 404:
            return None
        self._raise_for_status(response, "fetch job status")
        return JobStatusResponse.model_validate(response.json())

    async def cancel_job(self, job_id: str) -> None:
        response = await self._request("POST", f"/processing/cancel/{job_id}")
        self._raise_for_status(response, "cancel job")
