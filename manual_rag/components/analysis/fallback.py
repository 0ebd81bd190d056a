"""
Fallback text extraction for documents without rendered page images.

The whole PDF is handed to an OpenAI assistant with file search, which is
asked to return the text with explicit page markers. The run is polled as a
bounded state machine; the marked text is then split back into pages.
"""

import asyncio
import logging
import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from openai import AsyncOpenAI

from ...config.chat import PromptConfig
from ...config.processor import ExtractionConfig
from ...models.analysis import PageAnalysis
from ...utils.errors import ExtractionError, ExtractionTimeoutError
from ...utils.text import extract_json_object

logger = logging.getLogger(__name__)

PAGE_MARKER = re.compile(
    r"^[ \t]*-{2,}[ \t]*PAGE[ \t]+(\d+)[ \t]*-{2,}[ \t]*$",
    re.IGNORECASE | re.MULTILINE,
)

class JobState(str, Enum):
    SUBMITTED = "submitted"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"

# Assistants run status -> job state; unknown statuses count as running
RUN_STATUS_STATES = {
    "queued": JobState.RUNNING,
    "in_progress": JobState.RUNNING,
    "requires_action": JobState.RUNNING,
    "cancelling": JobState.RUNNING,
    "completed": JobState.COMPLETED,
    "failed": JobState.FAILED,
    "cancelled": JobState.FAILED,
    "expired": JobState.FAILED,
    "incomplete": JobState.FAILED,
}

TERMINAL_STATES = {JobState.COMPLETED, JobState.FAILED, JobState.TIMED_OUT}

@dataclass
class ExtractionJob:
    """Polling state of one extraction run."""
    thread_id: str
    run_id: str
    max_attempts: int
    state: JobState = JobState.SUBMITTED
    attempts: int = 0
    last_status: Optional[str] = None
    started_at: float = field(default_factory=time.monotonic)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.started_at

    def record_status(self, status: str) -> JobState:
        """Apply one polled run status and return the new state."""
        if self.is_terminal:
            raise ExtractionError(f"Job already finished in state '{self.state.value}'")
        self.attempts += 1
        self.last_status = status
        state = RUN_STATUS_STATES.get(status, JobState.RUNNING)
        if state is JobState.RUNNING and self.attempts >= self.max_attempts:
            state = JobState.TIMED_OUT
        self.state = state
        return state

@dataclass
class ExtractionResult:
    pages: List[PageAnalysis]
    total_pages: int
    summary: Optional[str] = None

def parse_page_markers(text: str) -> List[PageAnalysis]:
    """
    Split marker-annotated text into per-page analyses.

    Text before the first marker belongs to page 1. Without any marker the
    whole text is page 1. Repeated markers for a page are merged.
    """
    text = text or ""
    matches = list(PAGE_MARKER.finditer(text))
    if not matches:
        return [PageAnalysis(page_number=1, text_content=text.strip())] if text.strip() else []

    pages: Dict[int, List[str]] = {}
    preamble = text[:matches[0].start()].strip()
    if preamble:
        pages.setdefault(1, []).append(preamble)

    for i, match in enumerate(matches):
        end = matches[i + 1].start() if i + 1 < len(matches) else len(text)
        page_number = max(1, int(match.group(1)))
        body = text[match.end():end].strip()
        parts = pages.setdefault(page_number, [])
        if body:
            parts.append(body)

    return [
        PageAnalysis(page_number=number, text_content="\n\n".join(parts))
        for number, parts in sorted(pages.items())
    ]

def _as_positive_int(value: Any) -> int:
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return 0

def build_extraction_result(response_text: str) -> ExtractionResult:
    """Interpret the assistant's answer; falls back to the raw text if it is not JSON."""
    data = extract_json_object(response_text)
    if data is not None and isinstance(data.get("text_content"), str):
        text = data["text_content"]
        reported_pages = _as_positive_int(data.get("total_pages"))
        summary = data.get("document_summary") or None
    else:
        logger.info("Extraction response is not JSON, using raw text")
        text = response_text or ""
        reported_pages = 0
        summary = None

    pages = parse_page_markers(text)
    highest_page = max((p.page_number for p in pages), default=0)
    return ExtractionResult(
        pages=pages,
        total_pages=max(reported_pages, highest_page),
        summary=summary if isinstance(summary, str) else None,
    )

class FallbackExtractor:
    """Runs the assistant-based text extraction job for one PDF."""

    def __init__(
        self,
        client: AsyncOpenAI,
        config: Optional[ExtractionConfig] = None,
        prompts: Optional[PromptConfig] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.client = client
        self.config = config or ExtractionConfig()
        self.prompts = prompts or PromptConfig()
        self._sleep = sleep

    async def extract(self, pdf_bytes: bytes, filename: str = "document.pdf") -> ExtractionResult:
        """
        Extract per-page text from ``pdf_bytes``.

        Raises ExtractionTimeoutError when the run does not complete within
        ``max_poll_attempts`` polls, and ExtractionError when it fails.
        """
        uploaded = await self.client.files.create(
            file=(filename, pdf_bytes, "application/pdf"),
            purpose="assistants",
        )
        logger.info(f"Uploaded {len(pdf_bytes) // 1024} KB for extraction: {uploaded.id}")

        assistant = None
        try:
            assistant = await self.client.beta.assistants.create(
                name="PDF Analyzer",
                instructions=self.prompts.extraction_instructions,
                model=self.config.model,
                tools=[{"type": "file_search"}],
            )
            thread = await self.client.beta.threads.create(messages=[{
                "role": "user",
                "content": self.prompts.extraction_request,
                "attachments": [{"file_id": uploaded.id, "tools": [{"type": "file_search"}]}],
            }])
            run = await self.client.beta.threads.runs.create(
                thread_id=thread.id,
                assistant_id=assistant.id,
            )
            job = ExtractionJob(
                thread_id=thread.id,
                run_id=run.id,
                max_attempts=self.config.max_poll_attempts,
            )
            logger.info(f"Extraction run submitted: {run.id}")

            await self.wait_for_completion(job)
            response_text = await self._read_response(thread.id)
        finally:
            await self._cleanup(assistant, uploaded)

        result = build_extraction_result(response_text)
        logger.info(
            f"Extracted {sum(len(p.text_content) for p in result.pages)} chars "
            f"over {result.total_pages} pages"
        )
        return result

    async def wait_for_completion(self, job: ExtractionJob) -> ExtractionJob:
        """Poll the run until it reaches a terminal state."""
        while not job.is_terminal:
            await self._sleep(self.config.poll_interval)
            run = await self.client.beta.threads.runs.retrieve(job.run_id, thread_id=job.thread_id)
            job.record_status(run.status)
            logger.info(
                f"Extraction run status: {run.status} "
                f"(attempt {job.attempts}/{job.max_attempts})"
            )

        if job.state is JobState.FAILED:
            raise ExtractionError(f"Extraction run ended with status '{job.last_status}'")
        if job.state is JobState.TIMED_OUT:
            raise ExtractionTimeoutError(job.attempts, job.elapsed)
        return job

    async def _read_response(self, thread_id: str) -> str:
        messages = await self.client.beta.threads.messages.list(thread_id=thread_id, order="desc")
        for message in messages.data:
            if message.role != "assistant":
                continue
            return "".join(
                part.text.value for part in message.content if getattr(part, "type", None) == "text"
            )
        raise ExtractionError("Extraction run produced no assistant message")

    async def _cleanup(self, assistant, uploaded) -> None:
        if assistant is not None:
            try:
                await self.client.beta.assistants.delete(assistant.id)
            except Exception as e:
                logger.warning(f"Failed to delete assistant {assistant.id}: {str(e)}")
        try:
            await self.client.files.delete(uploaded.id)
        except Exception as e:
            logger.warning(f"Failed to delete uploaded file {uploaded.id}: {str(e)}")
