from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from domain.models import GROUP_ID_PREFIX, ContentBlock, Element
from domain.services.scene_elements import is_note_element, label_text, primary_group_id
from domain.services.text_similarity import SimilarityScorer, fuzzy_ratio

logger = logging.getLogger(__name__)

_NON_TOPIC_CHARS = re.compile(r"[^a-z0-9 ]")
_NON_WORD_CHARS = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")
_LEADING_BULLET = re.compile(r"^[•\-\*]\s*")
_BLOCK_COMMENT = re.compile(r"/\*.*?\*/", re.DOTALL)
_LINE_COMMENT = re.compile(r"(//|%%).*$", re.MULTILINE)
_DIAGRAM_TEXT_TYPES = {"text", "rectangle", "diamond", "ellipse", "arrow"}


@dataclass(frozen=True)
class MatchConfig:
    similarity_threshold: float = 0.7
    exact_match_threshold: float = 0.95
    topic_match_score: float = 1.5
    topic_min_word_length: int = 4
    acronym_max_length: int = 5


@dataclass(frozen=True)
class ContentMatch:
    group_id: str
    is_exact: bool
    score: float


@dataclass
class _NoteText:
    title: str = ""
    parts: list[str] = field(default_factory=list)

    def full_text(self) -> str:
        return " ".join([self.title, *self.parts]).strip()


def normalize_topic(value: str | None) -> str | None:
    if not value:
        return None
    lowered = value.lower().strip()
    lowered = _NON_TOPIC_CHARS.sub("", lowered)
    topic = _WHITESPACE.sub(" ", lowered).strip()
    return topic or None


def normalize_note_text(content: str | Sequence[str]) -> str:
    text = content if isinstance(content, str) else " ".join(content)
    text = _NON_WORD_CHARS.sub(" ", text.lower())
    return _WHITESPACE.sub(" ", text).strip()


def normalize_diagram_text(content: str | Sequence[str]) -> str:
    text = content if isinstance(content, str) else "\n".join(content)
    text = _BLOCK_COMMENT.sub("", text)
    text = _LINE_COMMENT.sub("", text)
    text = _WHITESPACE.sub(" ", text)
    text = _NON_WORD_CHARS.sub("", text)
    return text.strip().lower()


class ContentMatcher:
    def __init__(
        self,
        scorer: SimilarityScorer | None = None,
        config: MatchConfig | None = None,
    ) -> None:
        self.scorer = scorer or fuzzy_ratio
        self.config = config or MatchConfig()

    def extract_topic(self, block: ContentBlock) -> str | None:
        if block.title:
            return normalize_topic(block.title)
        if block.kind == "multi":
            children = block.children
            for child in children:
                if child.title:
                    return normalize_topic(child.title)
            for child in children:
                topic = self.extract_topic(child)
                if topic:
                    return topic
            return None
        for line in block.text().split("\n"):
            stripped = line.strip()
            if not stripped:
                continue
            return normalize_topic(_LEADING_BULLET.sub("", stripped))
        return None

    def find_similar_note(
        self,
        content: str | Sequence[str],
        elements: Iterable[Element],
        title: str | None = None,
    ) -> ContentMatch | None:
        notes = self._collect_note_text(elements)
        if not notes:
            return None
        content_text = content if isinstance(content, str) else "\n".join(content)
        potential_title = (title or content_text.split("\n")[0]).strip().lower()
        if potential_title:
            for group_id, note in notes.items():
                if note.title and note.title.strip().lower() == potential_title:
                    return ContentMatch(group_id=group_id, is_exact=True, score=1.0)

        candidate = normalize_note_text(f"{title} {content_text}" if title else content_text)
        if not candidate:
            return None
        best: ContentMatch | None = None
        for group_id, note in notes.items():
            existing = note.full_text()
            if not existing:
                continue
            score = self.scorer(candidate, normalize_note_text(existing))
            if score >= self.config.exact_match_threshold:
                return ContentMatch(group_id=group_id, is_exact=True, score=score)
            if score >= self.config.similarity_threshold and (best is None or score > best.score):
                best = ContentMatch(group_id=group_id, is_exact=False, score=score)
        return best

    def find_similar_diagram(
        self,
        markup: str | Sequence[str],
        elements: Iterable[Element],
    ) -> ContentMatch | None:
        candidate = normalize_diagram_text(markup)
        if not candidate:
            return None
        best: ContentMatch | None = None
        for group_id, existing in self._collect_diagram_text(elements).items():
            if not existing.strip():
                continue
            score = self.scorer(candidate, normalize_diagram_text(existing))
            if score >= self.config.exact_match_threshold:
                return ContentMatch(group_id=group_id, is_exact=True, score=score)
            if score >= self.config.similarity_threshold and (best is None or score > best.score):
                best = ContentMatch(group_id=group_id, is_exact=False, score=score)
        return best

    def match_topic(self, topic: str | None, known_topics: Sequence[str]) -> str | None:
        if not topic or not known_topics:
            return None
        lowered = topic.lower()
        for known in known_topics:
            if known.lower() == lowered:
                return known

        words = [word for word in lowered.split() if len(word) >= self.config.topic_min_word_length]
        if words:
            best_topic: str | None = None
            best_score = 0.0
            for known in known_topics:
                known_words = known.lower().split()
                if not known_words:
                    continue
                common = [
                    word
                    for word in words
                    if any(
                        other == word or other.startswith(word) or word.startswith(other)
                        for other in known_words
                    )
                ]
                score = len(common) + len(common) / max(len(words), len(known_words))
                if score > best_score:
                    best_topic, best_score = known, score
            if best_topic is not None and best_score >= self.config.topic_match_score:
                logger.debug("Topic %r matched %r with score %.2f", topic, best_topic, best_score)
                return best_topic

        compact = lowered.replace(" ", "")
        if compact and len(lowered) <= self.config.acronym_max_length:
            for known in known_topics:
                acronym = "".join(word[0] for word in known.lower().split())
                if acronym and acronym == compact:
                    return known
        return None

    def _collect_note_text(self, elements: Iterable[Element]) -> dict[str, _NoteText]:
        notes: dict[str, _NoteText] = {}
        for element in elements:
            if element.get("isDeleted") or not is_note_element(element):
                continue
            group_id = primary_group_id(element)
            if not group_id or not group_id.startswith(GROUP_ID_PREFIX):
                continue
            note = notes.setdefault(group_id, _NoteText())
            if element.get("type") == "text" and element.get("text"):
                text = str(element["text"])
                if not note.title and not note.parts:
                    note.title = text
                else:
                    note.parts.append(text)
            elif element.get("type") == "rectangle" and element.get("label"):
                note.parts.append(label_text(element["label"]))
        return notes

    def _collect_diagram_text(self, elements: Iterable[Element]) -> dict[str, str]:
        diagrams: dict[str, list[str]] = {}
        for element in elements:
            if element.get("isDeleted") or is_note_element(element):
                continue
            if element.get("type") not in _DIAGRAM_TEXT_TYPES:
                continue
            group_id = primary_group_id(element)
            if not group_id or not group_id.startswith(GROUP_ID_PREFIX):
                continue
            parts = diagrams.setdefault(group_id, [])
            if element.get("type") == "text" and element.get("text"):
                parts.append(str(element["text"]))
            elif element.get("label"):
                parts.append(label_text(element["label"]))
        return {group_id: " ".join(parts) for group_id, parts in diagrams.items()}
