"""CreditTransaction model for the credit audit trail."""

from enum import Enum
from typing import Any, Dict, Optional
import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, JSON, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


MAX_DESCRIPTION_LENGTH = 500


class TransactionType(str, Enum):
    DEDUCT = "deduct"
    ADD = "add"
    REFUND = "refund"
    ADMIN_ADJUSTMENT = "admin_adjustment"


class CreditTransaction(Base):
    """Immutable credit ledger entry."""

    __tablename__ = "credit_transactions"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    transaction_type = Column(String, nullable=False, index=True)
    description = Column(String(MAX_DESCRIPTION_LENGTH), nullable=False)
    metadata_json = Column(JSON, nullable=True)
    timestamp = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    user = relationship("User", back_populates="credit_transactions")

    @classmethod
    def create(
        cls,
        *,
        user_id: str,
        amount: int,
        transaction_type: TransactionType,
        description: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> "CreditTransaction":
        """Build a validated transaction row."""
        tx_type = TransactionType(transaction_type)
        amount = int(amount)
        if amount == 0:
            raise ValueError("Transaction amount cannot be zero")
        if tx_type == TransactionType.DEDUCT and amount > 0:
            raise ValueError("Deduct transactions must have a negative amount")
        if tx_type in (TransactionType.ADD, TransactionType.REFUND) and amount < 0:
            raise ValueError(f"{tx_type.value} transactions must have a positive amount")
        text = (description or "").strip()
        if not text:
            raise ValueError("Transaction description cannot be empty")
        if len(text) > MAX_DESCRIPTION_LENGTH:
            raise ValueError(f"Transaction description cannot exceed {MAX_DESCRIPTION_LENGTH} characters")
        return cls(
            id=str(uuid.uuid4()),
            user_id=user_id,
            amount=amount,
            transaction_type=tx_type.value,
            description=text,
            metadata_json=dict(metadata or {}),
        )

    def is_debit(self) -> bool:
        return int(self.amount) < 0
