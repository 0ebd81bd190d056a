import pytest

from manual_rag.components.chunking.chunker import (
    Chunker, create_chunks, pack_paragraphs, sliding_windows, split_page_text,
)
from manual_rag.config.processor import ChunkingConfig
from manual_rag.models.analysis import Diagram, PageAnalysis, TableData

def paragraph(label: str, length: int = 300) -> str:
    words = []
    i = 0
    while len(" ".join(words)) < length:
        words.append(f"{label}{i}")
        i += 1
    return " ".join(words)[:length].strip()

def test_short_page_is_single_chunk():
    page = PageAnalysis(page_number=1, text_content="  Check the oil level before every start.  ")
    chunks = create_chunks([page])

    assert len(chunks) == 1
    assert chunks[0].content == "Check the oil level before every start."
    assert chunks[0].chunk_index == 0
    assert chunks[0].page_number == 1

def test_unstructured_text_uses_overlapping_windows():
    text = "abcdefghij" * 200
    pieces = split_page_text(text, size=800, overlap=100, min_length=50)

    assert len(pieces) == 3
    assert all(len(piece) <= 800 for piece in pieces)
    assert pieces[0][-100:] == pieces[1][:100]
    assert pieces[1][-100:] == pieces[2][:100]
    assert text.endswith(pieces[-1])

def test_short_trailing_window_is_dropped():
    pieces = sliding_windows("x" * 130, size=100, overlap=10, min_length=50)
    assert pieces == ["x" * 100]

def test_first_window_kept_even_if_short():
    assert sliding_windows("tiny", size=100, overlap=10, min_length=50) == ["tiny"]

def test_paragraph_packing_is_bounded_and_lossless():
    paragraphs = [paragraph(label) for label in ("alpha", "bravo", "charlie", "delta", "echo")]
    text = "\n\n".join(paragraphs)

    pieces = split_page_text(text, size=800, overlap=100, min_length=50)

    assert len(pieces) == 3
    assert all(len(piece) <= 800 + 100 + 1 for piece in pieces)
    for p in paragraphs:
        assert any(p in piece for piece in pieces)

def test_packed_chunk_starts_with_overlap_of_previous():
    chunks = pack_paragraphs(["a" * 500, "b" * 500], size=800, overlap=100)

    assert chunks == ["a" * 500, "a" * 100 + " " + "b" * 500]

def test_oversized_paragraph_is_windowed_before_packing():
    long_paragraph = "z" * 2000
    text = "\n\n".join([paragraph("intro", 200), long_paragraph, paragraph("outro", 200)])

    pieces = split_page_text(text, size=800, overlap=100, min_length=50)

    assert all(len(piece) <= 800 + 100 + 1 for piece in pieces)
    assert "".join(pieces).count("z") >= 2000

def test_tables_become_their_own_chunks():
    page = PageAnalysis(
        page_number=2,
        text_content="",
        tables=[
            TableData(title="Fuse ratings", content=[["Circuit", "Fuse"], ["Pump", "10 A"]]),
            TableData(title="", content="Torque | 12 Nm"),
            TableData(title="Empty", content="   "),
        ],
    )
    chunks = create_chunks([page])

    assert [c.content for c in chunks] == [
        "[TABLE: Fuse ratings]\nCircuit | Fuse\nPump | 10 A",
        "[TABLE: Untitled]\nTorque | 12 Nm",
    ]

def test_long_table_is_split_into_marked_chunks():
    rows = [["Circuit", "Fuse", "Wire"]] + [[f"Circuit {n}", f"{n % 30 + 1} A", "1.5 mm2"] for n in range(120)]
    page = PageAnalysis(
        page_number=4,
        text_content="Replace fuses only with the rating printed on the cover.",
        tables=[TableData(title="Fuse ratings", content=rows)],
    )

    chunks = create_chunks([page])
    table_chunks = [c for c in chunks if c.content.startswith("[TABLE: Fuse ratings]\n")]

    assert len(table_chunks) > 1
    assert all(len(c.content) <= 800 for c in table_chunks)
    assert chunks[0].content == "Replace fuses only with the rating printed on the cover."
    assert len(chunks) == len(table_chunks) + 1
    assert "Circuit 0 |" in table_chunks[0].content
    assert "Circuit 119 |" in table_chunks[-1].content

def test_diagram_flag_is_page_level():
    with_diagrams = PageAnalysis(
        page_number=1,
        text_content="\n\n".join(paragraph(label) for label in ("one", "two", "three", "four")),
        diagrams=[Diagram(description="Wiring of the motor"), Diagram(description="Fuse box layout")],
    )
    without = PageAnalysis(page_number=2, text_content="Plain page with no figures at all.")

    chunks = create_chunks([with_diagrams, without])
    page_one = [c for c in chunks if c.page_number == 1]
    page_two = [c for c in chunks if c.page_number == 2]

    assert len(page_one) > 1
    assert all(c.has_diagram for c in page_one)
    assert all(c.diagram_description == "Wiring of the motor; Fuse box layout" for c in page_one)
    assert all(not c.has_diagram and c.diagram_description is None for c in page_two)

def test_indices_are_global_and_pages_ordered():
    pages = [
        PageAnalysis(page_number=3, text_content="Third page text that is long enough."),
        PageAnalysis(page_number=1, text_content="First page text that is long enough."),
        PageAnalysis(page_number=2, text_content=""),
    ]
    chunks = create_chunks(pages)

    assert [c.page_number for c in chunks] == [1, 3]
    assert [c.chunk_index for c in chunks] == [0, 1]

def test_chunking_is_deterministic():
    pages = [
        PageAnalysis(page_number=1, text_content="\n\n".join(paragraph(label) for label in "abcdef")),
        PageAnalysis(page_number=2, text_content="w" * 3000),
    ]
    assert create_chunks(pages) == create_chunks(pages)

def test_overlap_must_be_smaller_than_size():
    with pytest.raises(ValueError):
        create_chunks([], chunk_size=100, chunk_overlap=100)
    with pytest.raises(ValueError):
        ChunkingConfig(chunk_size=100, chunk_overlap=200)

def test_chunker_uses_config():
    chunker = Chunker(ChunkingConfig(chunk_size=200, chunk_overlap=20, min_chunk_length=10))
    chunks = chunker.create_chunks([PageAnalysis(page_number=1, text_content="q" * 1000)])

    assert all(len(c.content) <= 200 for c in chunks)
    assert len(chunks) == 6
