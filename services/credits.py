"""Credit ledger and usage accounting helpers."""

from __future__ import annotations

from dataclasses import asdict, dataclass
import logging
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from config import CreditMode, resolve_credit_mode, settings
from models.credit_transaction import CreditTransaction, TransactionType
from models.document import DocumentType
from services.cache import (
    CreditCache,
    credit_balance_key,
    credit_cache,
    credit_check_key,
    local_dev_credits_key,
)
from services.errors import EntityNotFoundError, InsufficientCreditsError, PersistenceError, ValidationError
from services.stores import TransactionLog, UserCreditStore

logger = logging.getLogger(__name__)

UNLIMITED_CREDITS = 9007199254740991
LOCAL_STORAGE_MODE_CREDITS = 9999
LOCAL_DEV_CREDITS_TTL_SECONDS = 30 * 24 * 3600


@dataclass
class CreditCheck:
    allowed: bool
    credits: int
    tier: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def credit_cost(document_type) -> int:
    """Credits charged for one AI generation of the given document type."""
    doc_type = DocumentType.from_value(document_type)
    costs = {
        DocumentType.STARTUP_ANALYSIS: settings.CREDIT_COST_STARTUP_ANALYSIS,
        DocumentType.HACKATHON_ANALYSIS: settings.CREDIT_COST_HACKATHON_ANALYSIS,
        DocumentType.PRD: settings.CREDIT_COST_PRD,
        DocumentType.TECHNICAL_DESIGN: settings.CREDIT_COST_TECHNICAL_DESIGN,
        DocumentType.ARCHITECTURE: settings.CREDIT_COST_ARCHITECTURE,
        DocumentType.ROADMAP: settings.CREDIT_COST_ROADMAP,
    }
    return max(int(costs[doc_type]), 0)


class CreditLedger:
    """Spendable balance per user with an append-only transaction trail."""

    def __init__(
        self,
        users: UserCreditStore,
        transactions: TransactionLog,
        cache: CreditCache,
        mode: CreditMode,
    ):
        self.users = users
        self.transactions = transactions
        self.cache = cache
        self.mode = mode

    @classmethod
    def for_session(
        cls,
        db: AsyncSession,
        mode: Optional[CreditMode] = None,
        cache: Optional[CreditCache] = None,
    ) -> "CreditLedger":
        return cls(
            users=UserCreditStore(db),
            transactions=TransactionLog(db),
            cache=cache or credit_cache,
            mode=mode or resolve_credit_mode(),
        )

    @property
    def charging_bypassed(self) -> bool:
        return self.mode.local_storage_mode or not self.mode.credit_system_enabled

    async def check_balance(self, user_id: str) -> CreditCheck:
        if self.mode.local_storage_mode:
            return CreditCheck(allowed=True, credits=LOCAL_STORAGE_MODE_CREDITS, tier="admin")
        if not self.mode.credit_system_enabled:
            return CreditCheck(allowed=True, credits=UNLIMITED_CREDITS, tier="free")

        cache_key = credit_check_key(user_id)
        cached = await self.cache.get(cache_key)
        if cached:
            return CreditCheck(**cached)

        if self.mode.local_dev_mode:
            credits = await self._local_dev_credits(user_id)
            result = CreditCheck(allowed=credits > 0, credits=credits, tier="free")
        else:
            user = await self.users.find_by_id(user_id)
            if user is None:
                raise EntityNotFoundError("User", user_id)
            credits = int(user.credits or 0)
            result = CreditCheck(allowed=credits > 0, credits=credits, tier=user.tier or "free")

        await self.cache.set(cache_key, result.to_dict(), self.mode.cache_ttl_seconds)
        return result

    async def get_balance(self, user_id: str) -> Dict[str, Any]:
        if self.charging_bypassed:
            check = await self.check_balance(user_id)
            return {"credits": check.credits, "tier": check.tier}

        cache_key = credit_balance_key(user_id)
        cached = await self.cache.get(cache_key)
        if cached:
            return cached

        if self.mode.local_dev_mode:
            balance = {"credits": await self._local_dev_credits(user_id), "tier": "free"}
        else:
            user = await self.users.find_by_id(user_id)
            if user is None:
                raise EntityNotFoundError("User", user_id)
            balance = {"credits": int(user.credits or 0), "tier": user.tier or "free"}

        await self.cache.set(cache_key, balance, self.mode.cache_ttl_seconds)
        return balance

    async def deduct(
        self,
        user_id: str,
        amount: int,
        description: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> int:
        """Charge amount credits and return what was actually charged (0 when bypassed)."""
        amount = int(amount)
        if self.charging_bypassed or amount <= 0:
            return 0

        if self.mode.local_dev_mode:
            available = await self._local_dev_credits(user_id)
            if available < amount:
                raise InsufficientCreditsError(user_id, required=amount, available=available)
            await self._set_local_dev_credits(user_id, available - amount)
            await self.invalidate(user_id)
            return amount

        user = await self.users.find_by_id(user_id)
        if user is None:
            raise EntityNotFoundError("User", user_id)
        available = int(user.credits or 0)
        if available < amount:
            logger.warning("Insufficient credits for user %s: required=%s available=%s", user_id, amount, available)
            raise InsufficientCreditsError(user_id, required=amount, available=available)

        transaction = CreditTransaction.create(
            user_id=user_id,
            amount=-amount,
            transaction_type=TransactionType.DEDUCT,
            description=description,
            metadata=metadata,
        )
        await self.users.update_credits(user_id, available - amount)
        await self._record(transaction)
        await self.invalidate(user_id)
        logger.info("Deducted %s credits from user %s (remaining=%s)", amount, user_id, available - amount)
        return amount

    async def refund(
        self,
        user_id: str,
        amount: int,
        reason: str,
        description: str = "Credit refund",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> int:
        """Return previously deducted credits; reason is kept in the transaction metadata."""
        refund_metadata = dict(metadata or {})
        refund_metadata["reason"] = reason
        return await self._increase(user_id, amount, TransactionType.REFUND, description, refund_metadata)

    async def add(
        self,
        user_id: str,
        amount: int,
        transaction_type: TransactionType = TransactionType.ADD,
        description: str = "Credits added",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> int:
        if int(amount) <= 0:
            raise ValidationError("amount must be greater than 0")
        return await self._increase(user_id, amount, TransactionType(transaction_type), description, metadata)

    async def _increase(
        self,
        user_id: str,
        amount: int,
        transaction_type: TransactionType,
        description: str,
        metadata: Optional[Dict[str, Any]],
    ) -> int:
        amount = int(amount)
        if self.charging_bypassed or amount <= 0:
            return (await self.check_balance(user_id)).credits

        if self.mode.local_dev_mode:
            balance = await self._local_dev_credits(user_id) + amount
            await self._set_local_dev_credits(user_id, balance)
            await self.invalidate(user_id)
            return balance

        user = await self.users.find_by_id(user_id)
        if user is None:
            raise EntityNotFoundError("User", user_id)
        transaction = CreditTransaction.create(
            user_id=user_id,
            amount=amount,
            transaction_type=transaction_type,
            description=description,
            metadata=metadata,
        )
        balance = int(user.credits or 0) + amount
        await self.users.update_credits(user_id, balance)
        await self._record(transaction)
        await self.invalidate(user_id)
        logger.info("Credited %s credits (%s) to user %s (balance=%s)", amount, transaction_type.value, user_id, balance)
        return balance

    async def _record(self, transaction: CreditTransaction) -> None:
        # The balance write has already committed; a missing audit row is logged, not rolled back.
        try:
            await self.transactions.record_transaction(transaction)
        except PersistenceError as exc:
            logger.warning(
                "Failed to record %s transaction for user %s: %s",
                transaction.transaction_type,
                transaction.user_id,
                exc,
            )

    async def invalidate(self, user_id: str) -> None:
        await self.cache.delete(credit_check_key(user_id))
        await self.cache.delete(credit_balance_key(user_id))

    async def _local_dev_credits(self, user_id: str) -> int:
        key = local_dev_credits_key(user_id)
        cached = await self.cache.get(key)
        if cached is None:
            await self.cache.set(key, self.mode.local_dev_credits, LOCAL_DEV_CREDITS_TTL_SECONDS)
            return self.mode.local_dev_credits
        return int(cached)

    async def _set_local_dev_credits(self, user_id: str, credits: int) -> None:
        await self.cache.set(local_dev_credits_key(user_id), max(int(credits), 0), LOCAL_DEV_CREDITS_TTL_SECONDS)

    async def summary(self, user_id: str, limit: int = 30) -> Dict[str, Any]:
        balance = await self.get_balance(user_id)
        entries = await self.transactions.list_for_user(user_id, limit=limit)
        transaction_total = await self.transactions.sum_for_user(user_id)
        credits = int(balance.get("credits", 0))
        return {
            "balance": credits,
            "tier": balance.get("tier", "free"),
            "credit_system_enabled": self.mode.credit_system_enabled,
            "costs": {doc_type.value: credit_cost(doc_type) for doc_type in DocumentType},
            "transaction_total": transaction_total,
            "opening_balance": credits - transaction_total,
            "recent_transactions": [
                {
                    "id": entry.id,
                    "type": entry.transaction_type,
                    "amount": entry.amount,
                    "description": entry.description,
                    "metadata": entry.metadata_json or {},
                    "timestamp": entry.timestamp.isoformat() if entry.timestamp else None,
                }
                for entry in entries
            ],
        }
