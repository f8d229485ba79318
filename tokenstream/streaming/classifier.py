"""
Routes raw model chunks to the answer sink or the reasoning sink.

Providers disagree on where reasoning text lives, so the decision is
delegated to a user-supplied predicate ``(path, raw) -> bool``.  The *path*
is an opaque provider hint (usually a JSON-path-like expression such as
``"$.reasoning_content"``) that only the predicate interprets.

A raw chunk may be any of:

  - a parsed ``Delta``
  - a provider-specific mapping: either the delta object itself or a whole
    ``{"choices": [{"delta": {...}}]}`` payload
  - raw ``bytes`` / ``str`` JSON, decoded into a mapping before use
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Mapping, Union

from tokenstream.llm.delta import Delta

logger = logging.getLogger(__name__)

RawChunk = Union[Delta, Mapping[str, Any], bytes, str]
ReasoningPredicate = Callable[[str, Any], bool]
Extractor = Callable[[Any], "str | None"]


class ChunkKind(Enum):
    ANSWER = "answer"
    REASONING = "reasoning"


@dataclass(frozen=True)
class ChunkEvent:
    kind: ChunkKind
    text: str


# ---------------------------------------------------------------------------
# Default extraction
# ---------------------------------------------------------------------------


def normalize_raw_chunk(raw: RawChunk) -> Delta | Mapping[str, Any] | None:
    """Decode byte/str payloads; pass ``Delta`` and mappings through."""
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    if isinstance(raw, str):
        if not raw.strip():
            return None
        data = json.loads(raw)
        return data if isinstance(data, Mapping) else None
    if isinstance(raw, (Delta, Mapping)):
        return raw
    return None


def _delta_mapping(data: Mapping[str, Any]) -> Mapping[str, Any]:
    choices = data.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], Mapping):
        delta = choices[0].get("delta")
        if isinstance(delta, Mapping):
            return delta
    return data


def default_reasoning_extractor(raw: RawChunk) -> str | None:
    chunk = normalize_raw_chunk(raw)
    if chunk is None:
        return None
    if isinstance(chunk, Delta):
        return chunk.reasoning_content or chunk.reasoning
    delta = _delta_mapping(chunk)
    return delta.get("reasoning_content") or delta.get("reasoning")


def has_reasoning_content(path: str, raw: RawChunk) -> bool:
    """Predicate that ignores *path* and checks for any reasoning text."""
    return bool(default_reasoning_extractor(raw))


def default_answer_extractor(raw: RawChunk) -> str | None:
    chunk = normalize_raw_chunk(raw)
    if chunk is None:
        return None
    if isinstance(chunk, Delta):
        return chunk.content
    return _delta_mapping(chunk).get("content")


@dataclass(frozen=True)
class ExtractionStrategy:
    """Pair of ``raw -> text`` functions used once a chunk has been classified."""

    reasoning: Extractor = default_reasoning_extractor
    answer: Extractor = default_answer_extractor


DEFAULT_EXTRACTION = ExtractionStrategy()


# ---------------------------------------------------------------------------
# Classifier
# ---------------------------------------------------------------------------


class ReasoningClassifier:
    """
    Classify raw chunks with an injected predicate.

    Parameters
    ----------
    predicate:
        ``(path, raw) -> bool``; ``True`` means the chunk carries reasoning.
    path:
        Extraction path handed verbatim to *predicate*.
    extraction:
        Strategy used to pull the text slice out of a classified chunk.

    If either *predicate* or *path* is missing the classifier is disabled and
    every chunk is treated as an answer chunk.
    """

    def __init__(
        self,
        predicate: ReasoningPredicate | None = None,
        path: str | None = None,
        extraction: ExtractionStrategy | None = None,
    ) -> None:
        self.predicate = predicate
        self.path = path
        self.extraction = extraction or DEFAULT_EXTRACTION

    @property
    def enabled(self) -> bool:
        return self.predicate is not None and self.path is not None

    def is_reasoning(self, raw: RawChunk) -> bool:
        if not self.enabled:
            return False
        try:
            return bool(self.predicate(self.path, raw))
        except Exception:
            logger.warning(
                "Error in reasoning detection, processing as normal response",
                exc_info=True,
            )
            return False

    def classify(self, raw: RawChunk) -> ChunkEvent | None:
        """Return the event *raw* produces, or ``None`` if it carries no text."""
        if self.is_reasoning(raw):
            text = self.extraction.reasoning(raw)
            kind = ChunkKind.REASONING
        else:
            text = self.extraction.answer(raw)
            kind = ChunkKind.ANSWER
        if not text:
            return None
        return ChunkEvent(kind=kind, text=text)
