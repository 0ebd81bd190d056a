"""
Vision analysis of rendered PDF pages.
"""

import asyncio
import logging
from typing import List, Optional, Sequence, Union

from langchain_core.language_models import BaseChatModel
from pydantic import ValidationError

from ...config.chat import PromptConfig
from ...config.processor import VisionConfig
from ...models.analysis import PageAnalysis, PageImage
from ...services.llm import image_message, message_text
from ...utils.errors import PageAnalysisError
from ...utils.text import extract_json_object

logger = logging.getLogger(__name__)

def parse_page_analysis(raw: str, page_number: int) -> PageAnalysis:
    """
    Validate a model response against the page schema.

    Raises PageAnalysisError when the response holds no JSON object or the
    object does not match the schema.
    """
    data = extract_json_object(raw)
    if data is None:
        raise PageAnalysisError(f"Page {page_number}: response contains no JSON object")
    data["page_number"] = page_number
    try:
        return PageAnalysis.model_validate(data)
    except ValidationError as e:
        raise PageAnalysisError(f"Page {page_number}: invalid analysis: {e.error_count()} errors") from e

class PageAnalyzer:
    """Turns page images (or already extracted text) into PageAnalysis records."""

    def __init__(
        self,
        llm: BaseChatModel,
        config: Optional[VisionConfig] = None,
        prompts: Optional[PromptConfig] = None,
    ):
        self.llm = llm
        self.config = config or VisionConfig()
        self.prompts = prompts or PromptConfig()

    async def _analyze_image(self, page: PageImage) -> PageAnalysis:
        prompt = self.prompts.page_analysis_template.format(page_number=page.page_number)
        response = await self.llm.ainvoke([
            image_message(prompt, page.data_url, detail=self.config.page_detail)
        ])
        return parse_page_analysis(message_text(response), page.page_number)

    async def analyze_page(self, page: Union[PageImage, str], page_number: Optional[int] = None) -> PageAnalysis:
        """
        Analyze one page.

        Text input is wrapped as-is. For image input, any failure (model error,
        missing or invalid JSON) yields an empty analysis for that page.
        """
        if isinstance(page, str):
            return PageAnalysis(page_number=page_number or 1, text_content=page)

        try:
            analysis = await self._analyze_image(page)
        except Exception as e:
            logger.warning(f"Page {page.page_number} analysis failed, using empty analysis: {str(e)}")
            return PageAnalysis.empty(page.page_number)

        logger.info(
            f"Page {page.page_number}: {len(analysis.text_content)} chars, "
            f"{len(analysis.diagrams)} diagrams, {len(analysis.tables)} tables"
        )
        return analysis

    async def analyze_pages(self, pages: Sequence[PageImage]) -> List[PageAnalysis]:
        """
        Analyze pages in sequential groups of ``page_concurrency``; pages inside
        a group run concurrently. Results are ordered by page number.
        """
        group_size = max(1, self.config.page_concurrency)
        ordered = sorted(pages, key=lambda p: p.page_number)
        results: List[PageAnalysis] = []

        for start in range(0, len(ordered), group_size):
            group = ordered[start:start + group_size]
            logger.info(
                f"Analyzing pages {group[0].page_number}-{group[-1].page_number} "
                f"({start + len(group)}/{len(ordered)})"
            )
            results.extend(await asyncio.gather(*(self.analyze_page(page) for page in group)))

        empty_pages = [a.page_number for a in results if a.is_empty]
        if empty_pages:
            logger.warning(f"{len(empty_pages)} pages produced no content: {empty_pages}")
        return results
