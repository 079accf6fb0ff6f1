"""
Narrow document-store interface consumed by the sync core.

Only what the fan-out needs: scan a collection, query or count by field
equality, and group updates into atomic batches.
"""
from typing import Any, AsyncIterator, Mapping, Protocol

from shaka_sync.models import Document, DocumentRef


class WriteBatch(Protocol):
    def update(self, ref: DocumentRef, fields: Mapping[str, Any]) -> None: ...

    async def commit(self) -> None: ...


class DocumentStore(Protocol):
    def server_timestamp(self) -> Any:
        """Sentinel resolved to the commit time by the database."""
        ...

    def stream(self, collection: str) -> AsyncIterator[Document]: ...

    async def query_equal(self, collection: str, field: str, value: Any) -> list[Document]: ...

    async def count_equal(self, collection: str, field: str, value: Any) -> int: ...

    def batch(self) -> WriteBatch: ...
