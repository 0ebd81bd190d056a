import asyncio

import pytest

from manual_rag.models.analysis import ChunkData, ProcessedImage
from manual_rag.services.knowledge_base import (
    DEFAULT_IMAGE_CAPTION, InMemoryKnowledgeBase, KnowledgeBaseContents, rank_by_similarity,
)
from manual_rag.services.retriever import Retriever
from manual_rag.utils.errors import InputValidationError

CHUNKS = [
    ("Replace the pump filter every six months.", [1.0, 0.0, 0.0]),
    ("The pump motor requires a dedicated fuse.", [0.8, 0.6, 0.0]),
    ("Clean the housing with a dry cloth.", [0.0, 1.0, 0.0]),
    ("Warranty terms are listed at the end.", [0.0, 0.0, 1.0]),
]

def contents(chunks=CHUNKS, images=()):
    return KnowledgeBaseContents(
        chunks=[ChunkData(content=text, page_number=i + 1, chunk_index=i) for i, (text, _) in enumerate(chunks)],
        chunk_embeddings=[vector for _, vector in chunks],
        images=list(images),
        total_pages=len(chunks),
        processing_method="vision",
    )

def image(page_number, caption, embedding):
    return ProcessedImage(
        page_number=page_number, index=1, image_url=f"/assets/u/{page_number}.png",
        caption=caption, image_type="diagram", width=200, height=200, embedding=embedding,
    )

async def seeded(user_id="alice", **kwargs):
    kb = InMemoryKnowledgeBase()
    document = await kb.upsert_document(user_id, f"{user_id}/document.pdf", "manual.pdf")
    assert await kb.replace_contents(user_id, document.id, contents(**kwargs))
    return kb

def test_results_are_ordered_and_above_threshold():
    async def run():
        kb = await seeded()
        return await Retriever(kb).retrieve([1.0, 0.2, 0.0], "alice", k_chunks=6, k_images=4, threshold=0.25)

    result = asyncio.run(run())
    similarities = [c.similarity for c in result.chunks]

    assert similarities == sorted(similarities, reverse=True)
    assert all(s > 0.25 for s in similarities)
    assert result.chunks[0].content.startswith("Replace the pump filter")
    assert "Warranty terms are listed at the end." not in [c.content for c in result.chunks]

def test_raising_threshold_never_adds_results():
    async def run():
        kb = await seeded()
        retriever = Retriever(kb)
        query = [0.7, 0.7, 0.1]
        low = await retriever.retrieve(query, "alice", 6, 4, 0.1)
        high = await retriever.retrieve(query, "alice", 6, 4, 0.8)
        return low, high

    low, high = asyncio.run(run())

    assert {c.id for c in high.chunks} <= {c.id for c in low.chunks}
    assert len(high.chunks) < len(low.chunks)

def test_threshold_is_strict():
    rows = [{"id": 1, "embedding": [1.0, 0.0]}, {"id": 2, "embedding": [0.0, 1.0]}]
    ranked = rank_by_similarity([1.0, 0.0], rows, threshold=1.0, limit=5)
    assert ranked == []
    ranked = rank_by_similarity([1.0, 0.0], rows, threshold=0.0, limit=5)
    assert [row["id"] for row, _ in ranked] == [1]

def test_limits_cap_results():
    async def run():
        kb = await seeded()
        return await Retriever(kb).retrieve([1.0, 1.0, 1.0], "alice", k_chunks=2, k_images=0, threshold=0.0)

    result = asyncio.run(run())
    assert len(result.chunks) == 2
    assert result.images == []

def test_users_never_see_each_other():
    async def run():
        kb = await seeded("alice")
        bob = await kb.upsert_document("bob", "bob/document.pdf")
        await kb.replace_contents("bob", bob.id, contents(chunks=[("Bob's secret notes", [1.0, 0.0, 0.0])]))
        retriever = Retriever(kb)
        return (
            await retriever.retrieve([1.0, 0.0, 0.0], "alice", 6, 4, 0.0),
            await retriever.retrieve([1.0, 0.0, 0.0], "bob", 6, 4, 0.0),
            await retriever.retrieve([1.0, 0.0, 0.0], "carol", 6, 4, 0.0),
        )

    alice, bob, carol = asyncio.run(run())

    assert "Bob's secret notes" not in [c.content for c in alice.chunks]
    assert [c.content for c in bob.chunks] == ["Bob's secret notes"]
    assert carol.chunks == [] and carol.images == []

def test_images_are_retrieved_with_default_caption():
    async def run():
        kb = await seeded(images=[
            image(1, "Exploded view of the filter", [1.0, 0.0, 0.0]),
            image(2, "", [0.9, 0.1, 0.0]),
            image(3, "Unembedded", None),
        ])
        return await Retriever(kb).retrieve([1.0, 0.0, 0.0], "alice", 6, 4, 0.5)

    result = asyncio.run(run())

    assert [i.page_number for i in result.images] == [1, 2]
    assert result.images[1].caption == DEFAULT_IMAGE_CAPTION

def test_replace_contents_rejects_foreign_document():
    async def run():
        kb = await seeded("alice")
        alice = await kb.get_document("alice")
        stored = await kb.replace_contents("bob", alice.id, contents())
        return stored, await kb.count_contents("bob")

    stored, counts = asyncio.run(run())
    assert stored is False
    assert counts == (0, 0)

def test_invalid_parameters_are_rejected():
    retriever = Retriever(InMemoryKnowledgeBase())
    with pytest.raises(InputValidationError):
        asyncio.run(retriever.retrieve([1.0], "alice", 6, 4, 1.5))
    with pytest.raises(InputValidationError):
        asyncio.run(retriever.retrieve([1.0], "  ", 6, 4, 0.25))
