"""
Cloud Firestore implementation of the DocumentStore interface.

Uses the firebase-admin async Firestore client. One FirestoreStore is built per
process (start() at startup, stop() at shutdown) and handed to every component
that needs it.

Error mapping:
  ServiceUnavailable / DeadlineExceeded / InternalServerError / Aborted /
  RetryError                         → TransientStoreError
  any other GoogleAPICallError       → StoreError
"""
import logging
from functools import wraps
from typing import Any, AsyncIterator, Mapping, Optional

import firebase_admin
from firebase_admin import credentials, firestore_async
from google.api_core import exceptions as gexc
from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter

from shaka_sync.config import Settings
from shaka_sync.errors import StoreError, TransientStoreError
from shaka_sync.models import Document, DocumentRef

logger = logging.getLogger(__name__)

_TRANSIENT = (
    gexc.ServiceUnavailable,
    gexc.DeadlineExceeded,
    gexc.InternalServerError,
    gexc.Aborted,
    gexc.RetryError,
)


def translate_error(exc: Exception) -> StoreError:
    if isinstance(exc, _TRANSIENT):
        return TransientStoreError(str(exc))
    return StoreError(str(exc))


def _store_call(func):
    @wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except (gexc.GoogleAPICallError, gexc.RetryError) as exc:
            raise translate_error(exc) from exc

    return wrapper


class FirestoreWriteBatch:
    def __init__(self, client: firestore.AsyncClient) -> None:
        self._client = client
        self._batch = client.batch()

    def update(self, ref: DocumentRef, fields: Mapping[str, Any]) -> None:
        doc_ref = self._client.collection(ref.collection).document(ref.id)
        self._batch.update(doc_ref, dict(fields))

    @_store_call
    async def commit(self) -> None:
        await self._batch.commit()


class FirestoreStore:
    def __init__(
        self,
        credentials_path: Optional[str] = None,
        project_id: Optional[str] = None,
        app_name: str = "displayname-sync",
    ) -> None:
        self.credentials_path = credentials_path
        self.project_id = project_id
        self.app_name = app_name
        self._app: Optional[firebase_admin.App] = None
        self._client: Optional[firestore.AsyncClient] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "FirestoreStore":
        return cls(
            credentials_path=settings.firebase_credentials_path,
            project_id=settings.firebase_project_id,
            app_name=settings.service_name,
        )

    def start(self) -> None:
        if self.credentials_path:
            cred = credentials.Certificate(self.credentials_path)
        else:
            cred = credentials.ApplicationDefault()
        options = {"projectId": self.project_id} if self.project_id else None
        self._app = firebase_admin.initialize_app(cred, options, name=self.app_name)
        self._client = firestore_async.client(self._app)
        logger.info("Firestore client initialised (app=%s)", self.app_name)

    def stop(self) -> None:
        if self._app is not None:
            firebase_admin.delete_app(self._app)
            self._app = None
            self._client = None

    @property
    def client(self) -> firestore.AsyncClient:
        if self._client is None:
            raise RuntimeError("Firestore not initialised — call start() at startup")
        return self._client

    def server_timestamp(self) -> Any:
        return firestore.SERVER_TIMESTAMP

    async def stream(self, collection: str) -> AsyncIterator[Document]:
        try:
            async for snap in self.client.collection(collection).stream():
                yield Document(DocumentRef(collection, snap.id), snap.to_dict() or {})
        except (gexc.GoogleAPICallError, gexc.RetryError) as exc:
            raise translate_error(exc) from exc

    @_store_call
    async def query_equal(self, collection: str, field: str, value: Any) -> list[Document]:
        query = self.client.collection(collection).where(
            filter=FieldFilter(field, "==", value)
        )
        return [
            Document(DocumentRef(collection, snap.id), snap.to_dict() or {})
            async for snap in query.stream()
        ]

    @_store_call
    async def count_equal(self, collection: str, field: str, value: Any) -> int:
        query = self.client.collection(collection).where(
            filter=FieldFilter(field, "==", value)
        )
        results = await query.count(alias="count").get()
        # One aggregation per result row; a count query has exactly one.
        return int(results[0][0].value) if results else 0

    def batch(self) -> FirestoreWriteBatch:
        return FirestoreWriteBatch(self.client)
