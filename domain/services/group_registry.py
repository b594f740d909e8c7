from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from domain.models import GROUP_ID_PREFIX
from domain.services.match_content import ContentMatcher

logger = logging.getLogger(__name__)

STOP_WORDS = frozenset(
    {"the", "and", "for", "with", "about", "from", "that", "this", "these", "those"}
)


def child_group_id(parent_group_id: str, index: int) -> str:
    return f"{parent_group_id}_{index}"


def strip_stop_words(topic: str) -> str:
    return " ".join(word for word in topic.split(" ") if word and word.lower() not in STOP_WORDS)


class GroupIdAllocator:
    """Mints ``group_<token>`` ids whose millisecond token never repeats or goes backwards."""

    def __init__(self, clock: Callable[[], float] | None = None) -> None:
        self._clock = clock or time.time
        self._last_token = 0

    def allocate(self) -> str:
        token = int(self._clock() * 1000)
        if token <= self._last_token:
            token = self._last_token + 1
        self._last_token = token
        return f"{GROUP_ID_PREFIX}{token}"


@dataclass(frozen=True)
class TopicMatch:
    topic: str
    group_id: str


class GroupRegistry:
    def __init__(
        self,
        matcher: ContentMatcher | None = None,
        allocator: GroupIdAllocator | None = None,
    ) -> None:
        self.matcher = matcher or ContentMatcher()
        self.allocator = allocator or GroupIdAllocator()
        self._topics: dict[str, str] = {}
        self.current_group_id = self.allocator.allocate()

    def __len__(self) -> int:
        return len(self._topics)

    def topics(self) -> list[str]:
        return list(self._topics)

    def group_for(self, topic: str) -> str | None:
        return self._topics.get(topic)

    def lookup(self, topic: str | None) -> TopicMatch | None:
        if not topic:
            return None
        group_id = self._topics.get(topic)
        if group_id is not None:
            return TopicMatch(topic=topic, group_id=group_id)
        matched = self.matcher.match_topic(topic, self.topics())
        if matched is None:
            return None
        return TopicMatch(topic=matched, group_id=self._topics[matched])

    def resolve(self, topic: str | None) -> str | None:
        match = self.lookup(topic)
        return match.group_id if match else None

    def register(self, topic: str, group_id: str) -> None:
        self._topics[topic] = group_id
        variant = strip_stop_words(topic)
        if variant and variant != topic:
            self._topics[variant] = group_id
        logger.info("Registered topic %r -> %s", topic, group_id)

    def alias(self, topic: str, group_id: str) -> None:
        if self._topics.get(topic) == group_id:
            return
        self._topics[topic] = group_id
        logger.info("Aliased topic %r -> %s", topic, group_id)

    def allocate(self) -> str:
        self.current_group_id = self.allocator.allocate()
        return self.current_group_id

    def reset(self) -> str:
        self._topics.clear()
        return self.allocate()
