"""
Document persistence used by the trip and itinerary stores.

``FirestoreDocumentStore`` talks to Cloud Firestore; ``InMemoryDocumentStore``
keeps documents in process for local development and tests. Both assign
``created_at`` / ``updated_at`` on the server side of the boundary.
"""

import asyncio
import copy
import logging
import uuid
from datetime import datetime, date, timedelta, timezone
from enum import Enum
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from google.api_core import exceptions as google_exceptions
from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter
from google.oauth2 import service_account

from tabi.utils.config import get_settings
from tabi.utils.errors import DocumentNotFoundError

# (field, operator, value); only equality is used by the stores
Filter = Tuple[str, str, Any]


def sanitize_for_storage(value: Any) -> Any:
    """Recursively convert values into storage-friendly types.
    - datetime/date -> ISO string
    - Decimal -> float
    - set/tuple -> list
    - enums -> their value
    """
    if isinstance(value, dict):
        return {k: sanitize_for_storage(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [sanitize_for_storage(v) for v in value]
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, Enum):
        return value.value
    return value


class DocumentStore:
    """Async CRUD over named collections of JSON-like documents"""

    async def add(self, collection: str, data: Dict[str, Any]) -> str:
        raise NotImplementedError

    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    async def update(self, collection: str, doc_id: str, changes: Dict[str, Any]) -> None:
        raise NotImplementedError

    async def delete(self, collection: str, doc_id: str) -> None:
        raise NotImplementedError

    async def query(
        self,
        collection: str,
        filters: Optional[List[Filter]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        start_after: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Documents matching all equality filters; each result carries its ``id``"""
        raise NotImplementedError


class InMemoryDocumentStore(DocumentStore):

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._sequence = 0

    def _collection(self, name: str) -> Dict[str, Dict[str, Any]]:
        return self._collections.setdefault(name, {})

    def _now(self) -> datetime:
        # Strictly increasing so ordering by timestamp matches insertion order
        self._sequence += 1
        return datetime.now(timezone.utc).replace(microsecond=0) + timedelta(microseconds=self._sequence)

    async def add(self, collection: str, data: Dict[str, Any]) -> str:
        doc_id = uuid.uuid4().hex
        now = self._now()
        doc = sanitize_for_storage(dict(data))
        doc["created_at"] = now
        doc["updated_at"] = now
        self._collection(collection)[doc_id] = doc
        return doc_id

    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        doc = self._collection(collection).get(doc_id)
        if doc is None:
            return None
        return {"id": doc_id, **copy.deepcopy(doc)}

    async def update(self, collection: str, doc_id: str, changes: Dict[str, Any]) -> None:
        docs = self._collection(collection)
        if doc_id not in docs:
            raise DocumentNotFoundError(collection, doc_id)
        docs[doc_id].update(sanitize_for_storage(dict(changes)))
        docs[doc_id]["updated_at"] = self._now()

    async def delete(self, collection: str, doc_id: str) -> None:
        self._collection(collection).pop(doc_id, None)

    async def query(
        self,
        collection: str,
        filters: Optional[List[Filter]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        start_after: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        results = []
        for doc_id, doc in self._collection(collection).items():
            if all(doc.get(field) == value for field, _op, value in (filters or [])):
                results.append({"id": doc_id, **copy.deepcopy(doc)})

        if order_by:
            results.sort(key=lambda d: d.get(order_by), reverse=descending)
        if start_after:
            ids = [d["id"] for d in results]
            results = results[ids.index(start_after) + 1:] if start_after in ids else []
        if limit is not None:
            results = results[:limit]
        return results


class FirestoreDocumentStore(DocumentStore):
    """Cloud Firestore backed documents.

    The synchronous client is driven from the default thread pool so that
    store calls never block the event loop.
    """

    def __init__(self, client: Optional[firestore.Client] = None):
        self.settings = get_settings()
        self.logger = logging.getLogger(__name__)
        if client is not None:
            self.client = client
            return

        project_id = self.settings.FIRESTORE_PROJECT_ID or self.settings.GOOGLE_CLOUD_PROJECT
        try:
            # Prefer explicit Firestore credentials if provided (split-project support)
            credentials = None
            if self.settings.FIRESTORE_CREDENTIALS:
                credentials = service_account.Credentials.from_service_account_file(
                    self.settings.FIRESTORE_CREDENTIALS
                )
            database = self.settings.FIRESTORE_DATABASE_ID or None
            self.client = firestore.Client(project=project_id, credentials=credentials, database=database)
            self.logger.info("Initialized Firestore client", extra={"project": project_id, "database": database or "(default)"})
        except Exception:
            self.logger.exception("Failed to initialize Firestore client")
            raise

    async def _run(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)

    async def add(self, collection: str, data: Dict[str, Any]) -> str:
        payload = sanitize_for_storage(dict(data))
        payload["created_at"] = firestore.SERVER_TIMESTAMP
        payload["updated_at"] = firestore.SERVER_TIMESTAMP
        _, doc_ref = await self._run(self.client.collection(collection).add, payload)
        return doc_ref.id

    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        snap = await self._run(self.client.collection(collection).document(doc_id).get)
        if not snap.exists:
            return None
        return {"id": snap.id, **snap.to_dict()}

    async def update(self, collection: str, doc_id: str, changes: Dict[str, Any]) -> None:
        payload = sanitize_for_storage(dict(changes))
        payload["updated_at"] = firestore.SERVER_TIMESTAMP
        try:
            await self._run(self.client.collection(collection).document(doc_id).update, payload)
        except google_exceptions.NotFound as e:
            raise DocumentNotFoundError(collection, doc_id) from e

    async def delete(self, collection: str, doc_id: str) -> None:
        await self._run(self.client.collection(collection).document(doc_id).delete)

    async def query(
        self,
        collection: str,
        filters: Optional[List[Filter]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        start_after: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        query = self.client.collection(collection)
        for field, op, value in filters or []:
            query = query.where(filter=FieldFilter(field, op, value))
        if order_by:
            direction = firestore.Query.DESCENDING if descending else firestore.Query.ASCENDING
            query = query.order_by(order_by, direction=direction)
        if start_after:
            cursor = await self._run(self.client.collection(collection).document(start_after).get)
            if not cursor.exists:
                return []
            query = query.start_after(cursor)
        if limit is not None:
            query = query.limit(limit)

        snaps = await self._run(query.get)
        return [{"id": snap.id, **snap.to_dict()} for snap in snaps]


def create_document_store() -> DocumentStore:
    """Store selected by ``USE_FIRESTORE``"""
    if get_settings().USE_FIRESTORE:
        return FirestoreDocumentStore()
    logging.getLogger(__name__).warning("USE_FIRESTORE is false; documents are kept in memory only")
    return InMemoryDocumentStore()
