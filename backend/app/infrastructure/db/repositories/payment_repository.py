"""
Payment Repository

Data access for payment_history (legacy one-time orders).
"""

import logging
from typing import Optional

from app.domain.subscription import PaymentRecord, PaymentRecordPatch, patch_to_record
from app.infrastructure.db.record_store import RecordStore


logger = logging.getLogger(__name__)


class PaymentRepository:
    """Repository for one-time order payment records."""

    TABLE = "payment_history"

    def __init__(self, store: RecordStore):
        self._store = store

    async def get_by_order_id(self, gateway_order_id: str) -> Optional[PaymentRecord]:
        """Get the payment record for a gateway order."""
        rows = await self._store.query(
            self.TABLE,
            {"razorpay_order_id": gateway_order_id},
            limit=1,
        )
        return PaymentRecord.model_validate(rows[0]) if rows else None

    async def create(self, payment: PaymentRecord) -> PaymentRecord:
        record = payment.model_dump(
            by_alias=True, mode="json", exclude_none=True, exclude={"id"}
        )
        stored = await self._store.insert(self.TABLE, record)
        logger.info(f"Recorded pending order {payment.gateway_order_id} for user {payment.user_id}")
        return PaymentRecord.model_validate(stored)

    async def update(
        self,
        payment_id: str,
        patch: PaymentRecordPatch,
    ) -> Optional[PaymentRecord]:
        stored = await self._store.update(self.TABLE, payment_id, patch_to_record(patch))
        return PaymentRecord.model_validate(stored) if stored else None
