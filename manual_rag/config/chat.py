"""
Question answering configuration and prompt templates.
"""

from dataclasses import dataclass
import os
from dotenv import load_dotenv

load_dotenv()

@dataclass
class ChatConfig:
    """Configuration for answer composition."""
    model: str = os.getenv('MODEL', 'gpt-4o')
    temperature: float = 0.3
    max_tokens: int = 2500
    retriever_k_chunks: int = 6
    retriever_k_images: int = 4
    retriever_score_threshold: float = float(os.getenv('RETRIEVER_SCORE_THRESHOLD', 0.25))
    image_fallback_threshold: float = 0.4
    image_fallback_limit: int = 2

@dataclass
class PromptConfig:
    """Prompts used across the pipeline."""

    system_template: str = """You are an EXPERT TECHNICAL ASSISTANT specialized in industrial technical documentation.

CAPABILITIES:
- You answer using ONLY information from the user's document
- You can reference diagrams, schematics and images when they are relevant
- You explain step by step with absolute technical precision

ABSOLUTE RULES:
1. Do NOT invent information - use ONLY what is in the provided context
2. When you mention a relevant diagram/image, use the format: [IMAGE: short description]
3. If you cannot find the requested information, say so clearly
4. Keep the professional, technical tone of a senior engineer
5. Structure answers as numbered steps when applicable
6. Include exact specifications (numbers, units, values)
7. If there are relevant tables, mention them and extract the pertinent data

RESPONSE FORMAT:
- Clear, structured answers
- Numbered steps for procedures
- Image references when useful: [IMAGE: description]
- Precise technical data

If the user asks for something outside the scope of the document, answer:
"The requested information is not present in the provided document."
"""

    question_template: str = """DOCUMENT CONTEXT:
{context}

---

USER QUESTION:
{question}"""

    no_context_message: str = "No relevant information was found in the document."

    no_document_message: str = (
        "There is no processed document for this account yet. "
        "Upload a PDF manual and wait for processing to finish before asking questions."
    )

    error_message: str = (
        "Sorry, an error occurred while processing your question. Please try again."
    )

    page_analysis_template: str = """You are analyzing page {page_number} of a technical manual.

Return ONLY valid JSON (no markdown, no extra text) with this structure:
{{
  "text_content": "ALL the text on the page, transcribed verbatim",
  "diagrams": [{{"description": "...", "position": "top|middle|bottom|full-page", "type": "wiring|flowchart|schematic|exploded-view|chart|other", "elements": ["labelled part", "..."]}}],
  "tables": [{{"title": "...", "content": "table rows, one per line, cells separated by |"}}],
  "key_elements": ["part numbers, parameters, warnings, model names"]
}}

Rules:
1. Transcribe ALL text on the page. Do not summarize or skip anything, including headers, footnotes and labels.
2. Keep paragraphs separated by a blank line.
3. Describe EVERY diagram, figure or schematic with its type and the named elements it shows.
4. Extract tables verbatim, preserving every row and value with units.
5. Use empty lists when the page has no diagrams, tables or key elements."""

    caption_template: str = (
        "Describe this image from a technical manual in one or two sentences. "
        "Say whether it is a diagram, photo, chart, table or icon and name the "
        "main components or values it shows."
    )

    extraction_instructions: str = """You are an expert in technical document analysis. Extract ALL the content of the document.
Mark the start of every page with a line of the form:
--- PAGE <number> ---
Answer ONLY with valid JSON (no markdown, no extra text):
{
  "text_content": "--- PAGE 1 ---\\nAll text of page 1...\\n\\n--- PAGE 2 ---\\nAll text of page 2...",
  "total_pages": 10,
  "document_summary": "Short summary"
}"""

    extraction_request: str = (
        "Analyze this PDF document. Extract all of its text with the page markers "
        "and answer ONLY with valid JSON."
    )

chat_config = ChatConfig()
prompt_config = PromptConfig()
