import pytest
from sqlalchemy import select

from config import CreditMode
from models.credit_transaction import CreditTransaction, TransactionType
from models.user import User
from services.cache import CreditCache, credit_balance_key, credit_check_key
from services.credits import (
    LOCAL_STORAGE_MODE_CREDITS,
    UNLIMITED_CREDITS,
    CreditLedger,
    credit_cost,
)
from services.errors import EntityNotFoundError, InsufficientCreditsError, PersistenceError, ValidationError


LEDGER_USER_ID = "ledger-user"


async def _seed_user(session_maker, credits=3, tier="free", user_id=LEDGER_USER_ID):
    async with session_maker() as session:
        session.add(User(id=user_id, email=f"{user_id}@example.com", credits=credits, tier=tier))
        await session.commit()


async def _transactions(session_maker, user_id=LEDGER_USER_ID):
    async with session_maker() as session:
        result = await session.execute(select(CreditTransaction).where(CreditTransaction.user_id == user_id))
        return list(result.scalars().all())


async def _credits(session_maker, user_id=LEDGER_USER_ID):
    async with session_maker() as session:
        result = await session.execute(select(User.credits).where(User.id == user_id))
        return result.scalar_one()


@pytest.mark.asyncio
async def test_check_balance_reads_user_and_caches_result(session_maker):
    await _seed_user(session_maker, credits=2, tier="paid")
    cache = CreditCache()

    async with session_maker() as session:
        ledger = CreditLedger.for_session(session, mode=CreditMode(), cache=cache)
        check = await ledger.check_balance(LEDGER_USER_ID)

    assert check.allowed is True
    assert check.credits == 2
    assert check.tier == "paid"
    assert await cache.get(credit_check_key(LEDGER_USER_ID)) == {"allowed": True, "credits": 2, "tier": "paid"}


@pytest.mark.asyncio
async def test_check_balance_zero_credits_is_not_allowed(session_maker):
    await _seed_user(session_maker, credits=0)

    async with session_maker() as session:
        ledger = CreditLedger.for_session(session, mode=CreditMode(), cache=CreditCache())
        check = await ledger.check_balance(LEDGER_USER_ID)

    assert check.allowed is False
    assert check.credits == 0


@pytest.mark.asyncio
async def test_check_balance_unknown_user_raises(session_maker):
    async with session_maker() as session:
        ledger = CreditLedger.for_session(session, mode=CreditMode(), cache=CreditCache())
        with pytest.raises(EntityNotFoundError):
            await ledger.check_balance("missing-user")


@pytest.mark.asyncio
async def test_local_storage_mode_reports_admin_and_never_charges(session_maker):
    await _seed_user(session_maker, credits=1)
    mode = CreditMode(local_storage_mode=True)

    async with session_maker() as session:
        ledger = CreditLedger.for_session(session, mode=mode, cache=CreditCache())
        check = await ledger.check_balance(LEDGER_USER_ID)
        charged = await ledger.deduct(LEDGER_USER_ID, 1, "Document generation: PRD")

    assert (check.allowed, check.credits, check.tier) == (True, LOCAL_STORAGE_MODE_CREDITS, "admin")
    assert charged == 0
    assert await _credits(session_maker) == 1
    assert await _transactions(session_maker) == []


@pytest.mark.asyncio
async def test_disabled_credit_system_reports_unlimited(session_maker):
    mode = CreditMode(credit_system_enabled=False)

    async with session_maker() as session:
        ledger = CreditLedger.for_session(session, mode=mode, cache=CreditCache())
        check = await ledger.check_balance("anyone")
        charged = await ledger.deduct("anyone", 5, "Document generation: PRD")

    assert check.allowed is True
    assert check.credits == UNLIMITED_CREDITS
    assert check.tier == "free"
    assert charged == 0


@pytest.mark.asyncio
async def test_local_dev_mode_uses_cache_seeded_balance(session_maker):
    mode = CreditMode(local_dev_mode=True, local_dev_credits=2)
    cache = CreditCache()

    async with session_maker() as session:
        ledger = CreditLedger.for_session(session, mode=mode, cache=cache)
        first = await ledger.check_balance("dev-user")
        await ledger.deduct("dev-user", 1, "Document generation: PRD")
        second = await ledger.check_balance("dev-user")
        await ledger.deduct("dev-user", 1, "Document generation: Roadmap")
        with pytest.raises(InsufficientCreditsError):
            await ledger.deduct("dev-user", 1, "Document generation: Architecture")

    assert first.credits == 2
    assert second.credits == 1
    assert await _transactions(session_maker, "dev-user") == []


@pytest.mark.asyncio
async def test_deduct_persists_balance_and_records_negative_transaction(session_maker):
    await _seed_user(session_maker, credits=3)

    async with session_maker() as session:
        ledger = CreditLedger.for_session(session, mode=CreditMode(), cache=CreditCache())
        charged = await ledger.deduct(
            LEDGER_USER_ID,
            1,
            "Document generation: PRD",
            metadata={"documentType": "prd", "ideaId": "idea-1"},
        )

    assert charged == 1
    assert await _credits(session_maker) == 2
    transactions = await _transactions(session_maker)
    assert len(transactions) == 1
    assert transactions[0].transaction_type == TransactionType.DEDUCT.value
    assert transactions[0].amount == -1
    assert transactions[0].is_debit()
    assert transactions[0].metadata_json == {"documentType": "prd", "ideaId": "idea-1"}


@pytest.mark.asyncio
async def test_deduct_with_insufficient_credits_changes_nothing(session_maker):
    await _seed_user(session_maker, credits=0)

    async with session_maker() as session:
        ledger = CreditLedger.for_session(session, mode=CreditMode(), cache=CreditCache())
        with pytest.raises(InsufficientCreditsError) as exc_info:
            await ledger.deduct(LEDGER_USER_ID, 1, "Document generation: PRD")

    assert exc_info.value.required == 1
    assert exc_info.value.available == 0
    assert exc_info.value.http_status == 402
    assert await _credits(session_maker) == 0
    assert await _transactions(session_maker) == []


@pytest.mark.asyncio
async def test_refund_restores_balance_with_reason_in_metadata(session_maker):
    await _seed_user(session_maker, credits=1)

    async with session_maker() as session:
        ledger = CreditLedger.for_session(session, mode=CreditMode(), cache=CreditCache())
        await ledger.deduct(LEDGER_USER_ID, 1, "Document generation: PRD", metadata={"documentType": "prd"})
        balance = await ledger.refund(
            LEDGER_USER_ID,
            1,
            reason="AI timeout",
            description="Refund for failed document generation",
            metadata={"documentType": "prd"},
        )

    assert balance == 1
    assert await _credits(session_maker) == 1
    transactions = {tx.transaction_type: tx for tx in await _transactions(session_maker)}
    assert set(transactions) == {"deduct", "refund"}
    assert transactions["refund"].amount == 1
    assert transactions["refund"].metadata_json == {"documentType": "prd", "reason": "AI timeout"}
    assert sum(tx.amount for tx in transactions.values()) == 0


@pytest.mark.asyncio
async def test_add_rejects_non_positive_amounts(session_maker):
    await _seed_user(session_maker)

    async with session_maker() as session:
        ledger = CreditLedger.for_session(session, mode=CreditMode(), cache=CreditCache())
        with pytest.raises(ValidationError):
            await ledger.add(LEDGER_USER_ID, 0)


@pytest.mark.asyncio
async def test_admin_adjustment_is_recorded_with_its_type(session_maker):
    await _seed_user(session_maker, credits=0)

    async with session_maker() as session:
        ledger = CreditLedger.for_session(session, mode=CreditMode(), cache=CreditCache())
        balance = await ledger.add(
            LEDGER_USER_ID,
            5,
            transaction_type=TransactionType.ADMIN_ADJUSTMENT,
            description="Admin adjustment: beta tester",
        )

    assert balance == 5
    transactions = await _transactions(session_maker)
    assert [tx.transaction_type for tx in transactions] == ["admin_adjustment"]


@pytest.mark.asyncio
async def test_balance_changes_invalidate_cached_entries(session_maker):
    await _seed_user(session_maker, credits=3)
    cache = CreditCache()

    async with session_maker() as session:
        ledger = CreditLedger.for_session(session, mode=CreditMode(), cache=cache)
        await ledger.check_balance(LEDGER_USER_ID)
        await ledger.get_balance(LEDGER_USER_ID)
        assert await cache.get(credit_balance_key(LEDGER_USER_ID)) == {"credits": 3, "tier": "free"}

        await ledger.deduct(LEDGER_USER_ID, 1, "Document generation: PRD")

        assert await cache.get(credit_check_key(LEDGER_USER_ID)) is None
        assert await cache.get(credit_balance_key(LEDGER_USER_ID)) is None
        check = await ledger.check_balance(LEDGER_USER_ID)

    assert check.credits == 2


@pytest.mark.asyncio
async def test_transaction_log_failure_is_logged_not_raised(session_maker, monkeypatch, caplog):
    await _seed_user(session_maker, credits=2)

    async with session_maker() as session:
        ledger = CreditLedger.for_session(session, mode=CreditMode(), cache=CreditCache())

        async def _failing_record(transaction):
            raise PersistenceError("audit table unavailable")

        monkeypatch.setattr(ledger.transactions, "record_transaction", _failing_record)
        with caplog.at_level("WARNING", logger="services.credits"):
            charged = await ledger.deduct(LEDGER_USER_ID, 1, "Document generation: PRD")

    assert charged == 1
    assert await _credits(session_maker) == 1
    assert "Failed to record deduct transaction" in caplog.text


@pytest.mark.asyncio
async def test_summary_reconciles_balance_with_transactions(session_maker):
    await _seed_user(session_maker, credits=3)

    async with session_maker() as session:
        ledger = CreditLedger.for_session(session, mode=CreditMode(), cache=CreditCache())
        await ledger.deduct(LEDGER_USER_ID, 1, "Document generation: PRD")
        await ledger.add(LEDGER_USER_ID, 4, description="Credit top-up: 4 credits")
        summary = await ledger.summary(LEDGER_USER_ID)

    assert summary["balance"] == 6
    assert summary["transaction_total"] == 3
    assert summary["opening_balance"] == 3
    assert summary["costs"]["prd"] == credit_cost("prd")
    assert len(summary["recent_transactions"]) == 2


def test_transaction_factory_enforces_sign_rules():
    with pytest.raises(ValueError):
        CreditTransaction.create(
            user_id="u", amount=1, transaction_type=TransactionType.DEDUCT, description="bad"
        )
    with pytest.raises(ValueError):
        CreditTransaction.create(user_id="u", amount=-1, transaction_type=TransactionType.REFUND, description="bad")
    with pytest.raises(ValueError):
        CreditTransaction.create(user_id="u", amount=0, transaction_type=TransactionType.ADD, description="bad")
    with pytest.raises(ValueError):
        CreditTransaction.create(user_id="u", amount=1, transaction_type=TransactionType.ADD, description="  ")
    with pytest.raises(ValueError):
        CreditTransaction.create(user_id="u", amount=1, transaction_type=TransactionType.ADD, description="x" * 501)

    adjustment = CreditTransaction.create(
        user_id="u", amount=-2, transaction_type=TransactionType.ADMIN_ADJUSTMENT, description="correction"
    )
    assert adjustment.amount == -2


@pytest.mark.asyncio
async def test_local_cache_prunes_expired_keys_on_write(monkeypatch):
    clock = {"now": 1000.0}
    monkeypatch.setattr("services.cache.time.time", lambda: clock["now"])
    cache = CreditCache()

    await cache.set(credit_check_key("idle-user"), {"credits": 1}, ttl_seconds=60)
    clock["now"] += 61
    await cache.set(credit_check_key("active-user"), {"credits": 2}, ttl_seconds=60)

    assert credit_check_key("idle-user") not in cache._local
    assert await cache.get(credit_check_key("active-user")) == {"credits": 2}
