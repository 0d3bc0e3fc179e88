"""Async persistence helpers for users, ideas, documents and credit transactions."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.credit_transaction import CreditTransaction
from models.document import Document, DocumentType
from models.idea import Idea
from models.user import User
from services.errors import PersistenceError

logger = logging.getLogger(__name__)


def _type_value(document_type) -> str:
    return DocumentType.from_value(document_type).value


class UserCreditStore:
    """Reads and writes the persisted credit balance on the users table."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_by_id(self, user_id: str) -> Optional[User]:
        # Balances change from other sessions; never trust the identity map copy.
        result = await self.db.execute(
            select(User).where(User.id == user_id).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def ensure_user(self, user_id: str, email: Optional[str] = None) -> User:
        user = await self.find_by_id(user_id)
        if user:
            return user
        user = User(id=user_id, email=email or f"{user_id}@local.invalid")
        self.db.add(user)
        try:
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            raise PersistenceError(f"Failed to create user {user_id}: {exc}") from exc
        await self.db.refresh(user)
        return user

    async def update_credits(self, user_id: str, new_balance: int) -> User:
        if int(new_balance) < 0:
            raise PersistenceError(f"Refusing to persist negative balance for user {user_id}")
        user = await self.find_by_id(user_id)
        if user is None:
            raise PersistenceError(f"User not found while updating credits: {user_id}")
        user.credits = int(new_balance)
        try:
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            raise PersistenceError(f"Failed to update credits for user {user_id}: {exc}") from exc
        return user


class TransactionLog:
    """Append-only credit transaction log."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def record_transaction(self, transaction: CreditTransaction) -> CreditTransaction:
        self.db.add(transaction)
        try:
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            raise PersistenceError(f"Failed to record credit transaction: {exc}") from exc
        return transaction

    async def list_for_user(self, user_id: str, limit: int = 30) -> List[CreditTransaction]:
        result = await self.db.execute(
            select(CreditTransaction)
            .where(CreditTransaction.user_id == user_id)
            .order_by(CreditTransaction.timestamp.desc())
            .limit(max(int(limit), 1))
        )
        return list(result.scalars().all())

    async def sum_for_user(self, user_id: str) -> int:
        result = await self.db.execute(
            select(func.coalesce(func.sum(CreditTransaction.amount), 0)).where(CreditTransaction.user_id == user_id)
        )
        return int(result.scalar() or 0)


class IdeaStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_by_id(self, idea_id: str) -> Optional[Idea]:
        result = await self.db.execute(select(Idea).where(Idea.id == idea_id))
        return result.scalar_one_or_none()

    async def create(self, user_id: str, idea_text: str, source: str = "manual") -> Idea:
        idea = Idea(user_id=user_id, idea_text=idea_text, source=source)
        self.db.add(idea)
        try:
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            raise PersistenceError(f"Failed to save idea: {exc}") from exc
        await self.db.refresh(idea)
        return idea

    async def list_for_user(self, user_id: str) -> List[Idea]:
        result = await self.db.execute(
            select(Idea).where(Idea.user_id == user_id).order_by(Idea.created_at.desc())
        )
        return list(result.scalars().all())


class DocumentVersionStore:
    """Insert-only document store; the latest version is the max version per (idea, type)."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_by_id(self, document_id: str) -> Optional[Document]:
        result = await self.db.execute(select(Document).where(Document.id == document_id))
        return result.scalar_one_or_none()

    async def find_latest_version(self, idea_id: str, document_type) -> Optional[Document]:
        result = await self.db.execute(
            select(Document)
            .where(Document.idea_id == idea_id, Document.document_type == _type_value(document_type))
            .order_by(Document.version.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def find_all_versions(self, idea_id: str, document_type) -> List[Document]:
        result = await self.db.execute(
            select(Document)
            .where(Document.idea_id == idea_id, Document.document_type == _type_value(document_type))
            .order_by(Document.version.desc())
        )
        return list(result.scalars().all())

    async def find_by_idea(self, idea_id: str) -> List[Document]:
        """Latest version of every document type attached to the idea."""
        result = await self.db.execute(
            select(Document).where(Document.idea_id == idea_id).order_by(Document.version.desc())
        )
        latest: Dict[str, Document] = {}
        for document in result.scalars().all():
            latest.setdefault(document.document_type, document)
        return list(latest.values())

    async def save(self, document: Document) -> Document:
        idea_id, document_type, version = document.idea_id, document.document_type, document.version
        self.db.add(document)
        try:
            await self.db.commit()
        except IntegrityError as exc:
            await self.db.rollback()
            logger.warning("Version collision for idea=%s type=%s version=%s", idea_id, document_type, version)
            raise PersistenceError(
                f"Document version {version} already exists for {document_type}; retry the request."
            ) from exc
        except SQLAlchemyError as exc:
            await self.db.rollback()
            raise PersistenceError(f"Failed to save document: {exc}") from exc
        await self.db.refresh(document)
        return document
