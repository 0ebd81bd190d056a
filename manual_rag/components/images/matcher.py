"""
Heuristic image classification and answer-to-image resolution.

Both are keyword scorers. ``ImageMatcher`` is the seam for replacing the
resolver with an embedding-based one without touching the composer.
"""

import logging
import re
from abc import ABC, abstractmethod
from typing import Dict, List, Sequence, Set

from ...models.analysis import ResolvedImage, RetrievedImage

logger = logging.getLogger(__name__)

IMAGE_TAG = re.compile(r"\[IMAGE:\s*([^\]]+)\]", re.IGNORECASE)
WORD = re.compile(r"\w+")

DEFAULT_IMAGE_TYPE = "diagram"

TYPE_KEYWORDS: Dict[str, Sequence[str]] = {
    "diagram": ("diagram", "schematic", "wiring", "circuit", "flowchart", "exploded",
                "layout", "drawing", "blueprint", "connection", "assembly"),
    "photo": ("photo", "photograph", "picture", "camera", "snapshot"),
    "chart": ("chart", "graph", "plot", "curve", "histogram", "axis", "trend"),
    "table": ("table", "tabular", "rows", "columns", "spreadsheet", "matrix"),
    "icon": ("icon", "logo", "symbol", "pictogram", "emblem", "badge"),
}

def tokenize(text: str, min_length: int = 4) -> List[str]:
    """Lower-cased word tokens of at least ``min_length`` characters."""
    return [w for w in WORD.findall((text or "").lower()) if len(w) >= min_length]

def classify_image_type(caption: str) -> str:
    """
    Pick diagram/photo/chart/table/icon by keyword hits in the caption.

    No hits, or a tie involving several types, resolves to diagram.
    """
    words = WORD.findall((caption or "").lower())
    scores = {
        image_type: sum(1 for word in words for keyword in keywords if word.startswith(keyword))
        for image_type, keywords in TYPE_KEYWORDS.items()
    }
    best = max(scores.values())
    if best == 0:
        return DEFAULT_IMAGE_TYPE
    winners = [image_type for image_type, score in scores.items() if score == best]
    return winners[0] if len(winners) == 1 else DEFAULT_IMAGE_TYPE

def find_image_tags(text: str) -> List[str]:
    """Descriptions inside ``[IMAGE: ...]`` tags, in order of appearance."""
    return [match.group(1).strip() for match in IMAGE_TAG.finditer(text or "")]

def score_image(description: str, image: RetrievedImage) -> int:
    """Token overlap between a tag description and a caption, plus 2 for a type-name match."""
    caption_words = tokenize(image.caption)
    score = 0
    for word in tokenize(description):
        if any(word in caption_word or caption_word in word for caption_word in caption_words):
            score += 1
    if image.image_type and image.image_type.lower() in description.lower():
        score += 2
    return score

def to_resolved(image: RetrievedImage) -> ResolvedImage:
    return ResolvedImage(url=image.image_url, caption=image.caption, page_number=image.page_number)

class ImageMatcher(ABC):
    """Resolves the images an answer refers to."""

    @abstractmethod
    def match(self, response: str, images: Sequence[RetrievedImage]) -> List[ResolvedImage]:
        """Return the images to attach to ``response``, in order."""

class KeywordImageMatcher(ImageMatcher):
    """Matches ``[IMAGE: ...]`` tags to retrieved images by caption keywords."""

    def __init__(self, fallback_threshold: float = 0.4, fallback_limit: int = 2):
        self.fallback_threshold = fallback_threshold
        self.fallback_limit = fallback_limit

    def match(self, response: str, images: Sequence[RetrievedImage]) -> List[ResolvedImage]:
        tags = find_image_tags(response)
        if not tags:
            return self._fallback(images)

        used: Set[int] = set()
        matched: List[ResolvedImage] = []
        for description in tags:
            best, best_score = None, 0
            for image in images:
                if image.id in used:
                    continue
                score = score_image(description, image)
                if score > best_score:
                    best, best_score = image, score
            if best is not None:
                used.add(best.id)
                matched.append(to_resolved(best))
            else:
                logger.debug(f"No image matches tag '{description}'")

        logger.info(f"Resolved {len(matched)} of {len(tags)} image tags")
        return matched

    def _fallback(self, images: Sequence[RetrievedImage]) -> List[ResolvedImage]:
        relevant = [image for image in images if image.similarity > self.fallback_threshold]
        relevant.sort(key=lambda image: image.similarity, reverse=True)
        return [to_resolved(image) for image in relevant[:self.fallback_limit]]
