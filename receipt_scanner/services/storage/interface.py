"""
Abstract Storage Interface

DESIGN DECISION: Persistence is a collaborator of the OCR core, not part of it.
We define the narrow interface the scan flow needs so that:
1. The relational store used in production stays outside this package
2. In-memory storage can be used for tests and local runs
3. Business logic stays decoupled from any storage implementation
"""

from abc import ABC, abstractmethod
from typing import Optional
from uuid import UUID

from receipt_scanner.models.audit import AuditEvent
from receipt_scanner.models.transaction import TransactionDraft


class TransactionStorageInterface(ABC):
    """
    Abstract interface for transaction persistence.

    Accepts normalized, sanitized transaction drafts only.
    """

    @abstractmethod
    async def save_transaction(self, draft: TransactionDraft) -> str:
        """
        Save a transaction.

        Args:
            draft: Sanitized transaction data

        Returns:
            The identifier assigned by the store

        Raises:
            StorageError: If save fails
        """
        pass

    @abstractmethod
    async def get_transaction(self, transaction_id: str) -> Optional[TransactionDraft]:
        """
        Retrieve a transaction by id.

        Returns:
            The transaction if found, None otherwise
        """
        pass

    @abstractmethod
    async def list_transactions(
        self,
        account_id: Optional[str] = None,
        limit: int = 100,
    ) -> list[TransactionDraft]:
        """
        List stored transactions, newest first.

        Args:
            account_id: Restrict to one account
            limit: Maximum number of results
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (one receipt scan).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass
