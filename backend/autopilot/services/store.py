"""Record store contract plus an in-memory implementation."""
from __future__ import annotations

import asyncio
import copy
from dataclasses import replace
from typing import Callable, Dict, List, Optional, Protocol, Tuple

from autopilot.services.types import (
    DisputeRecord,
    Merchant,
    SignalRecord,
    SubmissionAttempt,
    append_attempt,
)


DisputeMutator = Callable[[Optional[DisputeRecord]], Optional[DisputeRecord]]


class DisputeStore(Protocol):
    async def get_merchant(self, merchant_id: str) -> Optional[Merchant]:
        ...

    async def get_merchant_by_account(self, processor_account_id: str) -> Optional[Merchant]:
        ...

    async def list_merchants(self) -> List[Merchant]:
        ...

    async def upsert_merchant(self, merchant: Merchant) -> Merchant:
        ...

    async def get_dispute(self, dispute_id: str) -> Optional[DisputeRecord]:
        ...

    async def list_disputes(self, merchant_id: Optional[str] = None) -> List[DisputeRecord]:
        ...

    async def upsert_dispute(self, record: DisputeRecord) -> DisputeRecord:
        ...

    async def update_dispute(self, dispute_id: str, mutate: DisputeMutator) -> Optional[DisputeRecord]:
        """Serialized read-modify-write; ``mutate`` returning None leaves the record untouched."""
        ...

    async def append_attempt(self, dispute_id: str, attempt: SubmissionAttempt) -> Optional[DisputeRecord]:
        ...

    async def add_alert(self, alert: SignalRecord) -> bool:
        ...

    async def add_inquiry(self, inquiry: SignalRecord) -> bool:
        ...

    async def list_alerts(self, merchant_id: Optional[str] = None) -> List[SignalRecord]:
        ...

    async def list_inquiries(self, merchant_id: Optional[str] = None) -> List[SignalRecord]:
        ...


class InMemoryStore:
    """Process-local store; records are copied in and out so callers never share state."""

    def __init__(self) -> None:
        self._merchants: Dict[str, Merchant] = {}
        self._disputes: Dict[str, DisputeRecord] = {}
        self._alerts: Dict[Tuple[str, str], SignalRecord] = {}
        self._inquiries: Dict[Tuple[str, str], SignalRecord] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock(self, dispute_id: str) -> asyncio.Lock:
        lock = self._locks.get(dispute_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[dispute_id] = lock
        return lock

    async def get_merchant(self, merchant_id: str) -> Optional[Merchant]:
        merchant = self._merchants.get(str(merchant_id))
        return copy.deepcopy(merchant) if merchant else None

    async def get_merchant_by_account(self, processor_account_id: str) -> Optional[Merchant]:
        for merchant in self._merchants.values():
            if merchant.processor_account_id == processor_account_id:
                return copy.deepcopy(merchant)
        return None

    async def list_merchants(self) -> List[Merchant]:
        return [copy.deepcopy(merchant) for merchant in self._merchants.values()]

    async def upsert_merchant(self, merchant: Merchant) -> Merchant:
        self._merchants[merchant.id] = copy.deepcopy(merchant)
        return copy.deepcopy(merchant)

    async def get_dispute(self, dispute_id: str) -> Optional[DisputeRecord]:
        record = self._disputes.get(str(dispute_id))
        return copy.deepcopy(record) if record else None

    async def list_disputes(self, merchant_id: Optional[str] = None) -> List[DisputeRecord]:
        return [
            copy.deepcopy(record)
            for record in self._disputes.values()
            if merchant_id is None or record.merchant_id == merchant_id
        ]

    async def upsert_dispute(self, record: DisputeRecord) -> DisputeRecord:
        async with self._lock(record.id):
            self._disputes[record.id] = copy.deepcopy(record)
        return copy.deepcopy(record)

    async def update_dispute(self, dispute_id: str, mutate: DisputeMutator) -> Optional[DisputeRecord]:
        async with self._lock(dispute_id):
            current = self._disputes.get(dispute_id)
            updated = mutate(copy.deepcopy(current) if current else None)
            if updated is None:
                return copy.deepcopy(current) if current else None
            self._disputes[dispute_id] = copy.deepcopy(updated)
            return copy.deepcopy(updated)

    async def append_attempt(self, dispute_id: str, attempt: SubmissionAttempt) -> Optional[DisputeRecord]:
        def _append(current: Optional[DisputeRecord]) -> Optional[DisputeRecord]:
            if current is None:
                return None
            return replace(current, submission_attempts=append_attempt(current.submission_attempts, attempt))

        return await self.update_dispute(dispute_id, _append)

    @staticmethod
    def _add_signal(bucket: Dict[Tuple[str, str], SignalRecord], signal: SignalRecord) -> bool:
        key = (signal.merchant_id, signal.dedupe_key)
        if key in bucket:
            return False
        bucket[key] = copy.deepcopy(signal)
        return True

    async def add_alert(self, alert: SignalRecord) -> bool:
        return self._add_signal(self._alerts, alert)

    async def add_inquiry(self, inquiry: SignalRecord) -> bool:
        return self._add_signal(self._inquiries, inquiry)

    async def list_alerts(self, merchant_id: Optional[str] = None) -> List[SignalRecord]:
        return [copy.deepcopy(a) for a in self._alerts.values() if merchant_id is None or a.merchant_id == merchant_id]

    async def list_inquiries(self, merchant_id: Optional[str] = None) -> List[SignalRecord]:
        return [copy.deepcopy(i) for i in self._inquiries.values() if merchant_id is None or i.merchant_id == merchant_id]
