"""
In-memory storage backends.

Used by tests and local runs where no database is wired in.
Neither class awaits internally, so each operation is atomic within one event loop.
"""

from typing import Optional
from uuid import UUID, uuid4

from receipt_scanner.models.audit import AuditEvent
from receipt_scanner.models.transaction import TransactionDraft
from receipt_scanner.services.storage.interface import (
    AuditStorageInterface,
    TransactionStorageInterface,
)


class InMemoryTransactionStorage(TransactionStorageInterface):
    """Dict-backed transaction store."""

    def __init__(self):
        self._transactions: dict[str, TransactionDraft] = {}

    async def save_transaction(self, draft: TransactionDraft) -> str:
        transaction_id = str(uuid4())
        self._transactions[transaction_id] = draft.model_copy(deep=True)
        return transaction_id

    async def get_transaction(self, transaction_id: str) -> Optional[TransactionDraft]:
        stored = self._transactions.get(transaction_id)
        return stored.model_copy(deep=True) if stored else None

    async def list_transactions(
        self,
        account_id: Optional[str] = None,
        limit: int = 100,
    ) -> list[TransactionDraft]:
        drafts = [
            t for t in self._transactions.values()
            if account_id is None or t.account_id == account_id
        ]
        drafts.sort(key=lambda t: t.date, reverse=True)
        return [t.model_copy(deep=True) for t in drafts[:limit]]

    def __len__(self) -> int:
        return len(self._transactions)


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only list of audit events."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        return [e for e in self._events if e.correlation_id == correlation_id]

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        return list(reversed(self._events))[:limit]

    @property
    def events(self) -> list[AuditEvent]:
        return list(self._events)
