from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from domain.models import ConversationMessage, UpdateDecision
from domain.services.group_registry import GroupRegistry

logger = logging.getLogger(__name__)

STRONG_UPDATE_CUES = (
    "correction",
    "update",
    "replace",
    "modify",
    "change",
    "remove",
    "scratch that",
    "instead",
    "wait",
    "actually",
)
WEAK_UPDATE_CUES = (
    "also add",
    "also include",
    "mentioned earlier",
    "mentioned above",
    "add to",
)
EXPLICIT_NEW_CUES = ("new ", "another ", "different ", "separate ")
NEW_NOTE_CUES = (
    "new checklist",
    "new note",
    "different checklist",
    "another checklist",
    "separate checklist",
    "separate note",
    "another note",
)


@dataclass(frozen=True)
class ClassificationContext:
    utterance: str
    kind: str
    continuous_mode: bool
    topic: str | None = None
    previous_user_text: str | None = None
    previous_kind: str | None = None

    @property
    def previous_same_kind(self) -> bool:
        return self.previous_kind is not None and self.previous_kind == self.kind

    def mentions(self, cues: Sequence[str]) -> bool:
        lowered = self.utterance.lower()
        return any(cue in lowered for cue in cues)

    @classmethod
    def from_history(
        cls,
        utterance: str,
        kind: str,
        history: Sequence[ConversationMessage],
        continuous_mode: bool,
        topic: str | None = None,
    ) -> ClassificationContext:
        previous_user = next((m for m in reversed(history) if m.role == "user"), None)
        previous_assistant = next((m for m in reversed(history) if m.role == "assistant"), None)
        return cls(
            utterance=utterance,
            kind=kind,
            continuous_mode=continuous_mode,
            topic=topic,
            previous_user_text=previous_user.text() if previous_user else None,
            previous_kind=previous_assistant.block_kind() if previous_assistant else None,
        )


class UpdateRule(Protocol):
    name: str

    def evaluate(self, context: ClassificationContext) -> bool | None:
        """Return True for update, False for new, None to defer to the next rule."""
        ...


@dataclass(frozen=True)
class CueRule:
    name: str
    cues: tuple[str, ...]
    verdict: bool
    requires_continuous: bool = False

    def evaluate(self, context: ClassificationContext) -> bool | None:
        if self.requires_continuous and not context.continuous_mode:
            return None
        return self.verdict if context.mentions(self.cues) else None


@dataclass(frozen=True)
class SameKindContinuationRule:
    name: str = "same_kind_continuation"

    def evaluate(self, context: ClassificationContext) -> bool | None:
        if context.continuous_mode and context.previous_same_kind:
            return True
        return None


@dataclass(frozen=True)
class ContinuityGateRule:
    """Rejects updates unless the conversation is continuing with the same kind of content."""

    name: str = "continuity_gate"

    def evaluate(self, context: ClassificationContext) -> bool | None:
        if context.continuous_mode and context.previous_user_text and context.previous_same_kind:
            return None
        return False


@dataclass(frozen=True)
class NoteContinuationRule:
    name: str = "note_continuation"
    new_note_cues: tuple[str, ...] = NEW_NOTE_CUES

    def evaluate(self, context: ClassificationContext) -> bool | None:
        if context.kind != "note":
            return None
        return not context.mentions(self.new_note_cues)


class UpdatePolicy:
    def __init__(self, rules: Sequence[UpdateRule], default: bool = False) -> None:
        self.rules = list(rules)
        self.default = default

    def explain(self, context: ClassificationContext) -> tuple[bool, str]:
        for rule in self.rules:
            verdict = rule.evaluate(context)
            if verdict is not None:
                return verdict, rule.name
        return self.default, "default"


def default_topic_policy() -> UpdatePolicy:
    return UpdatePolicy(
        [
            CueRule("explicit_new", EXPLICIT_NEW_CUES, verdict=False),
            CueRule("strong_cue", STRONG_UPDATE_CUES, verdict=True),
            CueRule("weak_cue", WEAK_UPDATE_CUES, verdict=True, requires_continuous=True),
            SameKindContinuationRule(),
        ]
    )


def default_fallback_policy() -> UpdatePolicy:
    return UpdatePolicy(
        [
            ContinuityGateRule(),
            NoteContinuationRule(),
            CueRule("strong_cue", STRONG_UPDATE_CUES, verdict=True),
            CueRule("weak_cue", WEAK_UPDATE_CUES, verdict=True),
        ]
    )


class UpdateClassifier:
    def __init__(
        self,
        topic_policy: UpdatePolicy | None = None,
        fallback_policy: UpdatePolicy | None = None,
    ) -> None:
        self.topic_policy = topic_policy or default_topic_policy()
        self.fallback_policy = fallback_policy or default_fallback_policy()

    def classify(
        self,
        utterance: str,
        topic: str | None,
        registry: GroupRegistry,
        history: Sequence[ConversationMessage],
        kind: str,
        continuous_mode: bool = True,
        group_id: str | None = None,
    ) -> UpdateDecision:
        """Decide update vs. new. A new instance lands in ``group_id`` when one is given."""
        context = ClassificationContext.from_history(
            utterance, kind, history, continuous_mode, topic=topic
        )
        if topic:
            return self._classify_topic(context, topic, registry, group_id)
        return self._classify_without_topic(context, registry, group_id)

    def _classify_topic(
        self,
        context: ClassificationContext,
        topic: str,
        registry: GroupRegistry,
        group_id: str | None = None,
    ) -> UpdateDecision:
        match = registry.lookup(topic)
        if match is not None:
            is_update, rule = self.topic_policy.explain(context)
            if is_update:
                if topic != match.topic:
                    registry.alias(topic, match.group_id)
                registry.current_group_id = match.group_id
                logger.info(
                    "Updating topic %r (matched %r) in %s via %s",
                    topic,
                    match.topic,
                    match.group_id,
                    rule,
                )
                return UpdateDecision(
                    is_update=True,
                    group_id=match.group_id,
                    topic=topic,
                    matched_topic=match.topic,
                )
            logger.info("New instance of known topic %r via %s", topic, rule)
        group_id = _claim(registry, group_id)
        registry.register(topic, group_id)
        return UpdateDecision(
            is_update=False,
            group_id=group_id,
            topic=topic,
            matched_topic=match.topic if match else None,
        )

    def _classify_without_topic(
        self,
        context: ClassificationContext,
        registry: GroupRegistry,
        group_id: str | None = None,
    ) -> UpdateDecision:
        is_update, rule = self.fallback_policy.explain(context)
        if is_update:
            logger.info("Updating untitled content in %s via %s", registry.current_group_id, rule)
            return UpdateDecision(is_update=True, group_id=registry.current_group_id)
        group_id = _claim(registry, group_id)
        logger.info("New untitled content in %s", group_id)
        return UpdateDecision(is_update=False, group_id=group_id)


def _claim(registry: GroupRegistry, group_id: str | None) -> str:
    if group_id is None:
        return registry.allocate()
    registry.current_group_id = group_id
    return group_id
