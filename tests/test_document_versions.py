from datetime import datetime, timezone
import json

import pytest
from sqlalchemy import select

from config import CreditMode
from models.credit_transaction import CreditTransaction
from models.document import Document, DocumentType
from models.idea import Idea
from models.user import User
from services.cache import CreditCache
from services.credits import CreditLedger
from services.document_generator import DocumentGenerator
from services.documents import DocumentService, build_generation_context
from services.errors import (
    DocumentAlreadyExistsError,
    DocumentNotFoundError,
    GenerationError,
    IdeaNotFoundError,
    InsufficientCreditsError,
    PersistenceError,
    UnauthorizedAccessError,
    ValidationError,
)


OWNER_ID = "doc-owner"
OTHER_ID = "doc-intruder"


class StubGenerator:
    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []

    async def generate_document(self, document_type, context):
        self.calls.append((DocumentType.from_value(document_type), context))
        if self.fail:
            raise GenerationError("AI timeout")
        return f"# {DocumentType.from_value(document_type).display_name}\n\nGenerated body {len(self.calls)}"


async def _seed(session_maker, credits=3):
    async with session_maker() as session:
        session.add(User(id=OWNER_ID, email="owner@example.com", credits=credits))
        session.add(User(id=OTHER_ID, email="other@example.com", credits=3))
        idea = Idea(user_id=OWNER_ID, idea_text="A marketplace for reusable packaging")
        session.add(idea)
        await session.commit()
        return idea.id


def _service(session, generator):
    ledger = CreditLedger.for_session(session, mode=CreditMode(), cache=CreditCache())
    return DocumentService(session, ledger, generator)


async def _owner_credits(session_maker):
    async with session_maker() as session:
        return (await session.execute(select(User.credits).where(User.id == OWNER_ID))).scalar_one()


async def _owner_transactions(session_maker):
    async with session_maker() as session:
        result = await session.execute(select(CreditTransaction).where(CreditTransaction.user_id == OWNER_ID))
        return list(result.scalars().all())


@pytest.mark.asyncio
async def test_generate_creates_first_version_and_charges_once(session_maker):
    idea_id = await _seed(session_maker)
    generator = StubGenerator()

    async with session_maker() as session:
        result = await _service(session, generator).generate(idea_id, OWNER_ID, "prd")

    assert result.success is True
    document = result.data
    assert document.version == 1
    assert document.document_type == "prd"
    assert document.content == {"markdown": "# PRD\n\nGenerated body 1"}
    assert document.title.startswith("PRD - ")
    assert await _owner_credits(session_maker) == 2
    transactions = await _owner_transactions(session_maker)
    assert [(tx.transaction_type, tx.amount) for tx in transactions] == [("deduct", -1)]
    assert transactions[0].description == "Document generation: PRD"
    assert transactions[0].metadata_json == {"documentType": "prd", "ideaId": idea_id}


@pytest.mark.asyncio
async def test_generate_twice_for_same_type_is_rejected_before_charging(session_maker):
    idea_id = await _seed(session_maker)
    generator = StubGenerator()

    async with session_maker() as session:
        service = _service(session, generator)
        await service.generate(idea_id, OWNER_ID, "prd")
        second = await service.generate(idea_id, OWNER_ID, "prd")

    assert second.success is False
    assert isinstance(second.error, DocumentAlreadyExistsError)
    assert len(generator.calls) == 1
    assert await _owner_credits(session_maker) == 2


@pytest.mark.asyncio
async def test_versions_increase_by_one_and_prior_versions_are_immutable(session_maker):
    idea_id = await _seed(session_maker)
    generator = StubGenerator()

    async with session_maker() as session:
        service = _service(session, generator)
        first = (await service.generate(idea_id, OWNER_ID, DocumentType.ROADMAP)).data
        first_id = first.id
        await service.update(idea_id, OWNER_ID, "roadmap", {"markdown": "# Roadmap\n\nEdited"})
        await service.regenerate(idea_id, OWNER_ID, "roadmap")
        versions = (await service.get_versions(idea_id, OWNER_ID, "roadmap")).data

    assert [doc.version for doc in versions] == [3, 2, 1]
    assert versions[1].content == {"markdown": "# Roadmap\n\nEdited"}
    assert versions[2].id == first_id
    assert versions[2].content == {"markdown": "# Roadmap\n\nGenerated body 1"}
    assert len({doc.id for doc in versions}) == 3


@pytest.mark.asyncio
async def test_update_is_free_and_rejects_stale_document_id(session_maker):
    idea_id = await _seed(session_maker)

    async with session_maker() as session:
        service = _service(session, StubGenerator())
        v1 = (await service.generate(idea_id, OWNER_ID, "prd")).data
        v1_id = v1.id
        v2 = (await service.update(idea_id, OWNER_ID, "prd", {"markdown": "v2"}, document_id=v1_id)).data
        stale = await service.update(idea_id, OWNER_ID, "prd", {"markdown": "v3"}, document_id=v1_id)

    assert v2.version == 2
    assert stale.success is False
    assert isinstance(stale.error, DocumentNotFoundError)
    assert await _owner_credits(session_maker) == 2


@pytest.mark.asyncio
async def test_update_without_existing_document_fails(session_maker):
    idea_id = await _seed(session_maker)

    async with session_maker() as session:
        result = await _service(session, StubGenerator()).update(idea_id, OWNER_ID, "architecture", "text")

    assert isinstance(result.error, DocumentNotFoundError)


@pytest.mark.asyncio
async def test_failed_generation_refunds_and_saves_nothing(session_maker):
    idea_id = await _seed(session_maker, credits=1)

    async with session_maker() as session:
        result = await _service(session, StubGenerator(fail=True)).generate(idea_id, OWNER_ID, "prd")

    assert result.success is False
    assert isinstance(result.error, GenerationError)
    assert await _owner_credits(session_maker) == 1
    transactions = {tx.transaction_type: tx for tx in await _owner_transactions(session_maker)}
    assert set(transactions) == {"deduct", "refund"}
    assert transactions["refund"].description == "Refund for failed document generation"
    assert transactions["refund"].metadata_json["reason"] == "AI timeout"
    assert sum(tx.amount for tx in transactions.values()) == 0

    async with session_maker() as session:
        rows = (await session.execute(select(Document).where(Document.idea_id == idea_id))).scalars().all()
    assert rows == []


@pytest.mark.asyncio
async def test_failed_regeneration_refunds_and_keeps_latest_version(session_maker):
    idea_id = await _seed(session_maker, credits=2)

    async with session_maker() as session:
        await _service(session, StubGenerator()).generate(idea_id, OWNER_ID, "prd")

    async with session_maker() as session:
        service = _service(session, StubGenerator(fail=True))
        result = await service.regenerate(idea_id, OWNER_ID, "prd")
        versions = (await service.get_versions(idea_id, OWNER_ID, "prd")).data

    assert isinstance(result.error, GenerationError)
    assert [doc.version for doc in versions] == [1]
    assert await _owner_credits(session_maker) == 1
    refunds = [tx for tx in await _owner_transactions(session_maker) if tx.transaction_type == "refund"]
    assert len(refunds) == 1
    assert refunds[0].description == "Refund for failed document regeneration"
    assert refunds[0].metadata_json["previousVersion"] == 1


@pytest.mark.asyncio
async def test_save_failure_refunds_charge(session_maker, monkeypatch):
    idea_id = await _seed(session_maker, credits=1)

    async with session_maker() as session:
        service = _service(session, StubGenerator())

        async def _failing_save(document):
            raise PersistenceError("database unavailable")

        monkeypatch.setattr(service.documents, "save", _failing_save)
        result = await service.generate(idea_id, OWNER_ID, "prd")

    assert result.success is False
    assert await _owner_credits(session_maker) == 1
    assert sorted(tx.amount for tx in await _owner_transactions(session_maker)) == [-1, 1]


@pytest.mark.asyncio
async def test_insufficient_credits_refuses_without_ai_call_or_transaction(session_maker):
    idea_id = await _seed(session_maker, credits=0)
    generator = StubGenerator()

    async with session_maker() as session:
        result = await _service(session, generator).generate(idea_id, OWNER_ID, "prd")

    assert isinstance(result.error, InsufficientCreditsError)
    assert generator.calls == []
    assert await _owner_transactions(session_maker) == []
    assert await _owner_credits(session_maker) == 0


@pytest.mark.asyncio
async def test_ownership_is_enforced_on_every_operation(session_maker):
    idea_id = await _seed(session_maker)
    generator = StubGenerator()

    async with session_maker() as session:
        service = _service(session, generator)
        owned = (await service.generate(idea_id, OWNER_ID, "prd")).data
        owned_id = owned.id

        results = [
            await service.generate(idea_id, OTHER_ID, "roadmap"),
            await service.update(idea_id, OTHER_ID, "prd", "hijack"),
            await service.regenerate(idea_id, OTHER_ID, "prd"),
            await service.restore_version(idea_id, OTHER_ID, "prd", 1),
            await service.get_versions(idea_id, OTHER_ID, "prd"),
            await service.get_document(owned_id, OTHER_ID),
            await service.list_documents(idea_id, OTHER_ID),
        ]

    assert all(isinstance(result.error, UnauthorizedAccessError) for result in results)
    assert len(generator.calls) == 1

    async with session_maker() as session:
        other_credits = (await session.execute(select(User.credits).where(User.id == OTHER_ID))).scalar_one()
    assert other_credits == 3


@pytest.mark.asyncio
async def test_unknown_idea_is_reported(session_maker):
    await _seed(session_maker)

    async with session_maker() as session:
        result = await _service(session, StubGenerator()).generate("missing-idea", OWNER_ID, "prd")

    assert isinstance(result.error, IdeaNotFoundError)
    assert result.error.code == "IDEA_NOT_FOUND"


@pytest.mark.asyncio
async def test_restore_copies_target_content_into_new_version(session_maker):
    idea_id = await _seed(session_maker)

    async with session_maker() as session:
        service = _service(session, StubGenerator())
        await service.generate(idea_id, OWNER_ID, "prd")
        await service.update(idea_id, OWNER_ID, "prd", {"markdown": "second draft"})
        restored = (await service.restore_version(idea_id, OWNER_ID, "prd", 1)).data
        missing = await service.restore_version(idea_id, OWNER_ID, "prd", 9)
        versions = (await service.get_versions(idea_id, OWNER_ID, "prd")).data

    assert restored.version == 3
    assert restored.content == {"markdown": "# PRD\n\nGenerated body 1"}
    assert isinstance(missing.error, DocumentNotFoundError)
    assert [doc.version for doc in versions] == [3, 2, 1]
    assert await _owner_credits(session_maker) == 2


@pytest.mark.asyncio
async def test_generation_context_uses_latest_sibling_documents(session_maker):
    idea_id = await _seed(session_maker, credits=5)
    generator = StubGenerator()

    async with session_maker() as session:
        service = _service(session, generator)
        await service.generate(idea_id, OWNER_ID, "prd")
        await service.update(idea_id, OWNER_ID, "prd", {"markdown": "# PRD\n\nLatest PRD"})
        await service.generate(idea_id, OWNER_ID, "technical_design")

    _, context = generator.calls[-1]
    assert context.idea_text == "A marketplace for reusable packaging"
    assert context.existing_prd == "# PRD\n\nLatest PRD"
    assert context.existing_technical_design is None


def test_build_generation_context_reads_analysis_scores():
    analysis = Document(
        idea_id="i",
        user_id="u",
        document_type="startup_analysis",
        content={"finalScore": 7.5, "detailedSummary": "Strong market pull"},
        version=1,
    )
    design = Document(
        idea_id="i",
        user_id="u",
        document_type="technical_design",
        content="# Technical Design",
        version=2,
    )

    context = build_generation_context("idea", [analysis, design])

    assert context.analysis_scores == {"overall": 7.5}
    assert context.analysis_feedback == "Strong market pull"
    assert context.existing_technical_design == "# Technical Design"
    assert context.existing_prd is None


class InterleavingGenerator(StubGenerator):
    """Runs another caller's work after the AI answers but before the result is saved."""

    def __init__(self, before_return):
        super().__init__()
        self.before_return = before_return

    async def generate_document(self, document_type, context):
        markdown = await super().generate_document(document_type, context)
        await self.before_return()
        return markdown


@pytest.mark.asyncio
async def test_concurrent_regenerate_collision_refunds_the_losing_caller(session_maker):
    idea_id = await _seed(session_maker)
    async with session_maker() as session:
        await _service(session, StubGenerator()).generate(idea_id, OWNER_ID, "prd")

    winner_results = []

    async def _regenerate_in_other_session():
        async with session_maker() as session_a:
            winner_results.append(await _service(session_a, StubGenerator()).regenerate(idea_id, OWNER_ID, "prd"))

    async with session_maker() as session_b:
        loser = await _service(session_b, InterleavingGenerator(_regenerate_in_other_session)).regenerate(
            idea_id, OWNER_ID, "prd"
        )

    async with session_maker() as session:
        versions = (await _service(session, StubGenerator()).get_versions(idea_id, OWNER_ID, "prd")).data

    assert winner_results[0].success is True
    assert winner_results[0].data.version == 2
    assert loser.success is False
    assert isinstance(loser.error, PersistenceError)
    assert [doc.version for doc in versions] == [2, 1]
    transactions = await _owner_transactions(session_maker)
    assert [tx.transaction_type for tx in transactions] == ["deduct", "deduct", "deduct", "refund"]
    assert transactions[-1].description == "Refund for failed document regeneration"
    assert await _owner_credits(session_maker) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("blank", [None, "   ", {}, {"markdown": "\n"}])
async def test_update_rejects_blank_content_without_new_version(session_maker, blank):
    idea_id = await _seed(session_maker)

    async with session_maker() as session:
        service = _service(session, StubGenerator())
        await service.generate(idea_id, OWNER_ID, "prd")
        result = await service.update(idea_id, OWNER_ID, "prd", blank)
        versions = (await service.get_versions(idea_id, OWNER_ID, "prd")).data

    assert isinstance(result.error, ValidationError)
    assert result.error.http_status == 422
    assert [doc.version for doc in versions] == [1]


@pytest.mark.asyncio
async def test_export_document_renders_markdown_with_metadata_header(session_maker):
    idea_id = await _seed(session_maker)
    exported_at = datetime(2026, 3, 4, 5, 6, 7, tzinfo=timezone.utc)

    async with session_maker() as session:
        service = _service(session, StubGenerator())
        await service.generate(idea_id, OWNER_ID, "prd")
        edited = (await service.update(idea_id, OWNER_ID, "prd", {"markdown": "# PRD\n\nShip it"})).data
        edited_id = edited.id
        edited_title = edited.title
        result = await service.export_document(edited_id, OWNER_ID, now=exported_at)

    assert result.success is True
    export = result.data
    assert export.media_type == "text/markdown"
    assert export.metadata == {
        "title": edited_title,
        "version": 2,
        "exportDate": "2026-03-04T05:06:07+00:00",
        "documentType": "PRD",
    }
    assert export.content.startswith(f"---\ntitle: {edited_title}\ntype: PRD\nversion: 2\n")
    assert export.content.endswith("---\n\n# PRD\n\nShip it")
    assert export.filename.endswith("_v2_2026-03-04.md")
    assert export.filename.startswith("prd___")
    assert await _owner_credits(session_maker) == 2


@pytest.mark.asyncio
async def test_export_document_without_markdown_falls_back_to_json(session_maker):
    idea_id = await _seed(session_maker)
    async with session_maker() as session:
        session.add(
            Document(
                id="analysis-doc",
                idea_id=idea_id,
                user_id=OWNER_ID,
                document_type="startup_analysis",
                title=None,
                content={"finalScore": 8, "detailedSummary": "Strong pull"},
                version=1,
            )
        )
        await session.commit()

    async with session_maker() as session:
        result = await _service(session, StubGenerator()).export_document(
            "analysis-doc", OWNER_ID, now=datetime(2026, 1, 2, tzinfo=timezone.utc)
        )

    export = result.data
    header, body = export.content.split("\n\n", 1)
    assert "title: Startup Analysis" in header
    assert json.loads(body) == {"finalScore": 8, "detailedSummary": "Strong pull"}
    assert export.filename == "startup_analysis_v1_2026-01-02.md"


@pytest.mark.asyncio
async def test_export_document_checks_ownership_and_format(session_maker):
    idea_id = await _seed(session_maker)

    async with session_maker() as session:
        service = _service(session, StubGenerator())
        document_id = (await service.generate(idea_id, OWNER_ID, "prd")).data.id
        foreign = await service.export_document(document_id, OTHER_ID)
        missing = await service.export_document("missing-doc", OWNER_ID)
        pdf = await service.export_document(document_id, OWNER_ID, "pdf")

    assert isinstance(foreign.error, UnauthorizedAccessError)
    assert isinstance(missing.error, DocumentNotFoundError)
    assert isinstance(pdf.error, ValidationError)
    assert pdf.error.details["supported"] == ["markdown"]


def test_generator_reports_provider_from_client():
    assert DocumentGenerator(api_key="").provider == "deterministic"
    assert DocumentGenerator(client=object()).provider == "openai"
