from __future__ import annotations

from domain.services.group_registry import (
    GroupIdAllocator,
    GroupRegistry,
    child_group_id,
    strip_stop_words,
)


class FrozenClock:
    def __init__(self, value: float) -> None:
        self.value = value

    def __call__(self) -> float:
        return self.value


def test_allocator_never_repeats_within_same_millisecond() -> None:
    allocator = GroupIdAllocator(FrozenClock(1.0))

    ids = [allocator.allocate() for _ in range(3)]

    assert ids == ["group_1000", "group_1001", "group_1002"]


def test_child_group_id_and_stop_words() -> None:
    assert child_group_id("group_5", 2) == "group_5_2"
    assert strip_stop_words("the plan for launch") == "plan launch"


def test_register_adds_stop_word_alias() -> None:
    registry = GroupRegistry(allocator=GroupIdAllocator(FrozenClock(2.0)))

    registry.register("the launch plan", "group_9")

    assert registry.resolve("the launch plan") == "group_9"
    assert registry.group_for("launch plan") == "group_9"


def test_resolve_uses_fuzzy_topic_match() -> None:
    registry = GroupRegistry()
    registry.register("user login flow", "group_1")

    match = registry.lookup("login flow diagram")

    assert match is not None
    assert match.topic == "user login flow"
    assert registry.resolve("weekly groceries") is None
    assert registry.resolve(None) is None


def test_alias_keeps_many_topics_on_one_group() -> None:
    registry = GroupRegistry()
    registry.register("continuous integration", "group_1")
    registry.alias("ci", "group_1")

    assert registry.resolve("ci") == "group_1"
    assert len(registry) == 2


def test_reset_clears_topics_and_allocates_fresh_default() -> None:
    registry = GroupRegistry()
    registry.register("login flow", "group_1")
    previous = registry.current_group_id

    fresh = registry.reset()

    assert registry.topics() == []
    assert fresh == registry.current_group_id
    assert fresh != previous
