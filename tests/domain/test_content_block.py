from __future__ import annotations

from domain.models import ContentBlock, ConversationMessage


def test_wire_aliases_are_accepted() -> None:
    block = ContentBlock.model_validate(
        {"type": "note", "title": "Launch", "body": ["a", "b"], "groupId": "group_1"}
    )

    assert block.kind == "note"
    assert block.content == ["a", "b"]
    assert block.group_id == "group_1"
    assert block.text() == "a\nb"


def test_unknown_kind_is_downgraded_to_note() -> None:
    block = ContentBlock.model_validate({"kind": "table", "content": ["x", "y"]})

    assert block.kind == "note"
    assert block.content == ["x", "y"]


def test_multi_without_list_body_keeps_raw_content_as_note() -> None:
    block = ContentBlock.model_validate({"kind": "multi", "title": "Mixed", "content": "just text"})

    assert block.kind == "note"
    assert block.title == "Mixed"
    assert block.content == "just text"


def test_non_string_content_is_json_encoded() -> None:
    block = ContentBlock.model_validate({"kind": "note", "content": {"step": 1}})

    assert block.content == '{"step":1}'


def test_multi_children_are_coerced_and_invalid_items_dropped() -> None:
    block = ContentBlock.model_validate(
        {
            "kind": "multi",
            "content": [
                {"kind": "note", "title": "Todo", "content": ["a"]},
                "stray text",
                {"kind": "diagram", "content": "graph TD\nA-->B"},
            ],
        }
    )

    assert [child.kind for child in block.children] == ["note", "diagram"]
    assert block.children[0].title == "Todo"


def test_non_string_title_is_discarded() -> None:
    block = ContentBlock.model_validate({"kind": "note", "title": 42, "content": "x"})

    assert block.title is None


def test_non_mapping_payload_becomes_note() -> None:
    block = ContentBlock.model_validate(["a", "b"])

    assert block.kind == "note"
    assert block.content == '["a","b"]'


def test_assistant_message_kind_from_raw_json() -> None:
    message = ConversationMessage(role="assistant", content='{"kind": "diagram", "content": "graph TD"}')

    assert message.block_kind() == "diagram"
    assert ConversationMessage(role="assistant", content="not json").block_kind() is None
    assert ConversationMessage(role="user", content='{"kind": "note"}').block_kind() is None
