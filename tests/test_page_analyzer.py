import asyncio
import json

import pytest

from manual_rag.components.analysis.page_analyzer import PageAnalyzer, parse_page_analysis
from manual_rag.config.processor import VisionConfig
from manual_rag.utils.errors import PageAnalysisError

from .conftest import FakeChatModel, image_payload, page_image, page_json

def test_parse_fenced_json_and_force_page_number():
    raw = "```json\n" + json.dumps({
        "page_number": 99,
        "text_content": "Hello",
        "diagrams": [{"description": "Wiring", "position": None, "elements": "fuse"}],
        "tables": None,
        "extra": "ignored",
    }) + "\n```"

    analysis = parse_page_analysis(raw, 4)

    assert analysis.page_number == 4
    assert analysis.text_content == "Hello"
    assert analysis.diagrams[0].description == "Wiring"
    assert analysis.diagrams[0].elements == ["fuse"]
    assert analysis.tables == []

def test_parse_rejects_missing_json():
    with pytest.raises(PageAnalysisError):
        parse_page_analysis("Sorry, I cannot read this page.", 1)

def test_parse_rejects_schema_mismatch():
    with pytest.raises(PageAnalysisError):
        parse_page_analysis(json.dumps({"text_content": "Hello", "diagrams": "none"}), 1)

def test_partial_diagram_keeps_page_text():
    llm = FakeChatModel([json.dumps({
        "text_content": "Supply voltage range is 24 to 48 V DC.",
        "diagrams": [{"type": "wiring", "elements": ["X1"]}],
    })])

    analysis = asyncio.run(PageAnalyzer(llm).analyze_page(page_image(1)))

    assert analysis.text_content == "Supply voltage range is 24 to 48 V DC."
    assert analysis.diagrams[0].description == ""
    assert analysis.diagrams[0].type == "wiring"

def test_missing_text_content_defaults_to_empty():
    analysis = parse_page_analysis(json.dumps({"tables": [{"title": "Torque", "content": "M6 | 10 Nm"}]}), 2)

    assert analysis.text_content == ""
    assert analysis.tables[0].content == "M6 | 10 Nm"

def test_raw_newlines_inside_strings_are_accepted():
    raw = '{"text_content": "Step one.\nStep two.", "diagrams": []}'

    assert parse_page_analysis(raw, 3).text_content == "Step one.\nStep two."

def test_text_input_is_wrapped_without_model_call():
    llm = FakeChatModel([])
    analysis = asyncio.run(PageAnalyzer(llm).analyze_page("Already extracted text", 3))

    assert analysis.page_number == 3
    assert analysis.text_content == "Already extracted text"
    assert llm.calls == []

def test_model_failure_degrades_to_empty_page():
    llm = FakeChatModel([RuntimeError("rate limited")])
    analysis = asyncio.run(PageAnalyzer(llm).analyze_page(page_image(2)))

    assert analysis.page_number == 2
    assert analysis.is_empty

def test_invalid_json_degrades_to_empty_page():
    llm = FakeChatModel(["not json at all"])
    analysis = asyncio.run(PageAnalyzer(llm).analyze_page(page_image(5)))

    assert analysis.is_empty
    assert analysis.page_number == 5

def test_prompt_carries_page_number_and_image():
    llm = FakeChatModel([page_json("text")])
    asyncio.run(PageAnalyzer(llm).analyze_page(page_image(7)))

    content = llm.calls[0][0].content
    assert "page 7" in content[0]["text"]
    assert content[1]["image_url"]["detail"] == "high"
    assert image_payload(llm.calls[0]) == b"page-7"

class CountingModel(FakeChatModel):
    def __init__(self):
        super().__init__(lambda messages: page_json(image_payload(messages).decode()))
        self.in_flight = 0
        self.max_in_flight = 0

    async def ainvoke(self, messages, **kwargs):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        await asyncio.sleep(0.01)
        self.in_flight -= 1
        return await super().ainvoke(messages, **kwargs)

def test_pages_run_in_bounded_groups_and_keep_order():
    llm = CountingModel()
    analyzer = PageAnalyzer(llm, VisionConfig(page_concurrency=2))
    pages = [page_image(n) for n in (4, 1, 5, 3, 2)]

    results = asyncio.run(analyzer.analyze_pages(pages))

    assert [r.page_number for r in results] == [1, 2, 3, 4, 5]
    assert [r.text_content for r in results] == [f"page-{n}" for n in range(1, 6)]
    assert llm.max_in_flight == 2

def test_one_failed_page_does_not_abort_the_rest():
    def respond(messages):
        label = image_payload(messages).decode()
        if label == "page-2":
            return RuntimeError("timeout")
        return page_json(label)

    results = asyncio.run(PageAnalyzer(FakeChatModel(respond)).analyze_pages(
        [page_image(1), page_image(2), page_image(3)]
    ))

    assert [r.is_empty for r in results] == [False, True, False]
