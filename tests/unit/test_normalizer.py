"""请求规范化单元测试。"""

import pytest

from alnd_svc.exceptions import ValidationError
from alnd_svc.models import ChatLimits
from alnd_svc.services.chat.normalizer import (
    ATTACHMENTS_ERROR,
    MESSAGES_ERROR,
    clamp_output_tokens,
    coerce_text,
    normalize_chat_request,
)
from tests.fixtures import ChatPayloadBuilder


@pytest.mark.unit
class TestMessagesValidation:
    """messages 字段校验测试。"""

    @pytest.mark.parametrize(
        "payload",
        [
            {},
            {"messages": []},
            {"messages": "hello"},
            {"messages": None},
            {"messages": {"role": "user"}},
            ["not", "an", "object"],
            None,
        ],
    )
    def test_invalid_messages_rejected(self, payload, chat_limits):
        """测试 messages 缺失、为空或不是列表时返回校验错误。"""
        with pytest.raises(ValidationError) as exc_info:
            normalize_chat_request(payload, chat_limits)

        assert exc_info.value.status_code == 400
        assert exc_info.value.message == MESSAGES_ERROR

    def test_attachments_must_be_list(self, chat_limits):
        """测试 attachments 不是列表时返回校验错误。"""
        payload = ChatPayloadBuilder().with_message("user", "hi").build()
        payload["attachments"] = "image.png"

        with pytest.raises(ValidationError) as exc_info:
            normalize_chat_request(payload, chat_limits)

        assert exc_info.value.message == ATTACHMENTS_ERROR

    def test_null_attachments_treated_as_empty(self, chat_limits):
        """测试 attachments 为 null 时视为无附件。"""
        payload = ChatPayloadBuilder().with_message("user", "hi").build()
        payload["attachments"] = None

        assert normalize_chat_request(payload, chat_limits).attachments == []


@pytest.mark.unit
class TestNormalizeChatRequest:
    """normalize_chat_request 函数测试。"""

    def test_simple_request(self, chat_limits):
        """测试最简单的请求。"""
        payload = ChatPayloadBuilder().with_message("user", "你好").build()

        result = normalize_chat_request(payload, chat_limits)

        assert [(t.role, t.content) for t in result.turns] == [("user", "你好")]
        assert result.max_tokens == 400
        assert result.attachments == []

    def test_history_window_keeps_latest(self, chat_limits):
        """测试 25 条消息只保留最后 20 条，顺序不变。"""
        payload = ChatPayloadBuilder().with_history(25).build()

        result = normalize_chat_request(payload, chat_limits)

        assert len(result.turns) == 20
        assert [t.content for t in result.turns] == [f"m{i}" for i in range(5, 25)]

    def test_system_prepended_after_windowing(self):
        """测试系统提示词插入在最前面，且不占用历史窗口。"""
        limits = ChatLimits(max_history_items=3)
        payload = ChatPayloadBuilder().with_system("be brief").with_history(5).build()

        result = normalize_chat_request(payload, limits)

        assert len(result.turns) == 4
        assert result.turns[0].role == "system"
        assert result.turns[0].content == "be brief"
        assert [t.content for t in result.turns[1:]] == ["m2", "m3", "m4"]

    @pytest.mark.parametrize("system", ["", None, 42, ["a"], {"text": "x"}])
    def test_non_string_or_empty_system_ignored(self, system, chat_limits):
        """测试空或非字符串的系统提示词被忽略。"""
        payload = ChatPayloadBuilder().with_system(system).with_message("user", "hi").build()

        result = normalize_chat_request(payload, chat_limits)

        assert all(t.role != "system" for t in result.turns)

    @pytest.mark.parametrize("length,expected", [(4, 4), (5, 5), (6, 5)])
    def test_system_truncation_boundary(self, length, expected):
        """测试系统提示词长度不超过上限时不变，超过时截断到上限。"""
        limits = ChatLimits(max_system_length=5)
        system = "abcdefghij"[:length]
        payload = ChatPayloadBuilder().with_system(system).with_message("user", "hi").build()

        result = normalize_chat_request(payload, limits)

        assert result.turns[0].content == system[:expected]
        assert len(result.turns[0].content) == expected

    @pytest.mark.parametrize("length,expected", [(7999, 7999), (8000, 8000), (8001, 8000)])
    def test_content_truncation_boundary(self, length, expected, chat_limits):
        """测试消息内容在默认上限 8000 附近的截断行为。"""
        content = "x" * length
        payload = ChatPayloadBuilder().with_message("user", content).build()

        result = normalize_chat_request(payload, chat_limits)

        assert result.turns[0].content == "x" * expected

    @pytest.mark.parametrize(
        "role,expected",
        [
            ("assistant", "assistant"),
            ("user", "user"),
            ("system", "user"),
            ("tool", "user"),
            ("Assistant", "user"),
            (None, "user"),
            (7, "user"),
        ],
    )
    def test_role_coercion(self, role, expected, chat_limits):
        """测试角色仅在明确为 assistant 时保留。"""
        payload = ChatPayloadBuilder().with_message(role, "x").build()

        result = normalize_chat_request(payload, chat_limits)

        assert result.turns[0].role == expected

    def test_content_coerced_and_truncated(self):
        """测试消息内容转为文本并截断。"""
        limits = ChatLimits(max_content_length=4)
        payload = (
            ChatPayloadBuilder()
            .with_message("user", 1234567)
            .with_message("assistant", None)
            .with_message("user", "truncate me")
            .build()
        )

        result = normalize_chat_request(payload, limits)

        assert [t.content for t in result.turns] == ["1234", "", "trun"]

    def test_non_object_messages_become_empty_user_turns(self, chat_limits):
        """测试非对象消息转为空的用户消息。"""
        result = normalize_chat_request({"messages": ["hello", 3, None]}, chat_limits)

        assert [(t.role, t.content) for t in result.turns] == [("user", ""), ("user", ""), ("user", "")]

    def test_max_output_tokens_alias(self, chat_limits):
        """测试兼容 maxOutputTokens 字段名。"""
        payload = ChatPayloadBuilder().with_message("user", "hi").with_max_tokens(1000, key="maxOutputTokens").build()

        assert normalize_chat_request(payload, chat_limits).max_tokens == 1000

    def test_attachments_passed_through(self, chat_limits):
        """测试附件原样保留，由合并步骤处理。"""
        payload = ChatPayloadBuilder().with_message("user", "hi").with_text_file("notes", name="a.txt").build()

        result = normalize_chat_request(payload, chat_limits)

        assert result.attachments == [{"kind": "text", "text": "notes", "name": "a.txt"}]

    def test_input_not_mutated(self, chat_limits):
        """测试不修改输入请求体。"""
        payload = ChatPayloadBuilder().with_system("s").with_history(25).build()
        snapshot = {"system": payload["system"], "messages": [dict(m) for m in payload["messages"]]}

        normalize_chat_request(payload, chat_limits)

        assert payload == snapshot


@pytest.mark.unit
class TestClampOutputTokens:
    """clamp_output_tokens 函数测试。"""

    @pytest.mark.parametrize(
        "value,expected",
        [
            (10, 50),
            (50, 50),
            (999, 999),
            (5000, 2000),
            (-1, 50),
            (123.9, 123),
            (None, 400),
            ("1000", 400),
            (True, 400),
            (float("nan"), 400),
            (float("inf"), 400),
            ([], 400),
        ],
    )
    def test_clamp(self, value, expected, chat_limits):
        """测试数值被限制在 [50, 2000]，非数值使用默认值 400。"""
        assert clamp_output_tokens(value, chat_limits) == expected


@pytest.mark.unit
class TestCoerceText:
    """coerce_text 函数测试。"""

    def test_string_unchanged(self):
        assert coerce_text("hi") == "hi"

    def test_none_is_empty(self):
        assert coerce_text(None) == ""

    def test_content_parts_joined(self):
        """测试内容片段列表只保留文本片段。"""
        parts = [
            {"type": "text", "text": "first"},
            {"type": "image_url", "image_url": {"url": "data:image/png;base64,AAAA"}},
            {"kind": "text", "text": "second"},
        ]
        assert coerce_text(parts) == "first\nsecond"

    def test_other_values_stringified(self):
        assert coerce_text(42) == "42"
        assert coerce_text(False) == "False"
