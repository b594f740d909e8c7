from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from typing import Any

import orjson

from domain.models import ContentBlock, ConversationMessage, UpdateDecision
from domain.ports.canvas import CanvasHost
from domain.services.classify_update import UpdateClassifier
from domain.services.group_registry import GroupRegistry, child_group_id
from domain.services.match_content import ContentMatcher
from domain.services.reconcile_scene import SceneReconciler

logger = logging.getLogger(__name__)


class CanvasSession:
    """Conversation state for one canvas: history, topic registry and the reconciler.

    Callers must not run two ``handle_response`` calls for the same session concurrently.
    """

    def __init__(
        self,
        reconciler: SceneReconciler,
        registry: GroupRegistry | None = None,
        classifier: UpdateClassifier | None = None,
        matcher: ContentMatcher | None = None,
        continuous_mode: bool = True,
        history_limit: int = 50,
    ) -> None:
        self.reconciler = reconciler
        self.matcher = matcher or reconciler.matcher
        self.registry = registry or GroupRegistry(self.matcher, reconciler.allocator)
        self.classifier = classifier or UpdateClassifier()
        self.continuous_mode = continuous_mode
        self.history_limit = history_limit
        self.history: list[ConversationMessage] = []

    async def handle_response(
        self,
        payload: ContentBlock | Mapping[str, Any] | list[Any] | str,
        utterance: str,
        host: CanvasHost,
    ) -> UpdateDecision:
        block = coerce_block(payload)
        decision = await self._handle_block(block, utterance, host, depth=0)
        now = time.time()
        self.history.append(ConversationMessage(role="user", content=utterance, timestamp=now))
        self.history.append(ConversationMessage(role="assistant", content=block, timestamp=now))
        if len(self.history) > self.history_limit:
            del self.history[: len(self.history) - self.history_limit]
        return decision

    async def _handle_block(
        self,
        block: ContentBlock,
        utterance: str,
        host: CanvasHost,
        depth: int,
        group_id: str | None = None,
    ) -> UpdateDecision:
        max_depth = self.reconciler.config.max_multi_depth
        if block.kind == "multi" and block.children and depth < max_depth:
            return await self._handle_multi(block, utterance, host, depth, group_id)
        topic = self.matcher.extract_topic(block)
        if depth and not topic:
            # untitled child stays in its own slot of the bundle
            decision = UpdateDecision(is_update=False, group_id=group_id)
        else:
            decision = self.classifier.classify(
                utterance,
                topic,
                self.registry,
                self.history,
                block.kind,
                continuous_mode=self.continuous_mode,
                group_id=group_id,
            )
        await self.reconciler.reconcile(
            block.with_group(decision.group_id),
            host,
            history=self.history,
            utterance=utterance,
            force_update=decision.is_update,
            depth=depth,
        )
        return decision

    async def _handle_multi(
        self,
        block: ContentBlock,
        utterance: str,
        host: CanvasHost,
        depth: int,
        group_id: str | None,
    ) -> UpdateDecision:
        """Classify every child on its own so each topic maps to the group holding its elements."""
        parent_group_id = block.group_id or group_id or self.registry.allocate()
        decisions = [
            await self._handle_block(
                child,
                utterance,
                host,
                depth + 1,
                child.group_id or child_group_id(parent_group_id, index),
            )
            for index, child in enumerate(block.children)
        ]
        return UpdateDecision(
            is_update=any(decision.is_update for decision in decisions),
            group_id=parent_group_id,
            topic=self.matcher.extract_topic(block),
        )

    def clear_history(self) -> str:
        self.history.clear()
        group_id = self.registry.reset()
        logger.info("Cleared conversation history; default group is now %s", group_id)
        return group_id


def coerce_block(payload: Any) -> ContentBlock:
    """Accept a block, its wire mapping, or the raw JSON text returned by the model."""
    if isinstance(payload, ContentBlock):
        return payload
    if isinstance(payload, str):
        try:
            decoded = orjson.loads(payload)
        except orjson.JSONDecodeError:
            return ContentBlock(kind="note", content=payload)
        return ContentBlock.model_validate(decoded)
    if isinstance(payload, Mapping):
        return ContentBlock.model_validate(dict(payload))
    return ContentBlock.model_validate(payload)
