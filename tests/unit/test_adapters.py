"""Unit tests for request rendering and non-streaming parsing."""

import logging

import pytest

from unillm.adapters import (
    AnthropicAdapter,
    OllamaAdapter,
    OpenAICompatibleAdapter,
    ThinkTagSplitter,
    XAIAdapter,
    split_think_tags,
)
from unillm.config import ProviderConfig, profile_config
from unillm.errors import ProviderError
from unillm.message import Message, MessageRole, ToolCallRequestMessage, ToolCallResultMessage
from unillm.streaming import ToolCall
from unillm.tools import ToolRegistry


def conversation():
    call = ToolCall(id="call_1", name="get_weather", arguments='{"city": "Oslo"}')
    return [
        Message.system("Be brief."),
        Message.user("Weather in Oslo?"),
        ToolCallRequestMessage(role=MessageRole.ASSISTANT, tool_calls=[call]),
        ToolCallResultMessage(
            role=MessageRole.TOOL, content="18C", tool_call_id="call_1", tool_name="get_weather",
        ),
    ]


# ---------------------------------------------------------------------------
# <think> tag splitting
# ---------------------------------------------------------------------------


class TestThinkTagSplitter:
    def test_whole_tags(self):
        splitter = ThinkTagSplitter()
        assert splitter.feed("<think>hmm</think>Answer") == [
            ("reasoning", "hmm"), ("text", "Answer"),
        ]

    def test_tags_split_across_chunks(self):
        splitter = ThinkTagSplitter()
        pieces = []
        for chunk in ["<thi", "nk>deep", " thought</th", "ink>\n\nHi", " there"]:
            pieces.extend(splitter.feed(chunk))
        pieces.extend(splitter.flush())

        reasoning = "".join(p for kind, p in pieces if kind == "reasoning")
        text = "".join(p for kind, p in pieces if kind == "text")
        assert reasoning == "deep thought"
        assert text == "Hi there"

    def test_lone_angle_bracket_released_on_flush(self):
        splitter = ThinkTagSplitter()
        assert splitter.feed("a <") == [("text", "a ")]
        assert splitter.flush() == [("text", "<")]

    def test_split_complete_message(self):
        assert split_think_tags("<think>plan</think>\nDone") == ("Done", "plan")
        assert split_think_tags("No tags") == ("No tags", None)


# ---------------------------------------------------------------------------
# OpenAI-compatible
# ---------------------------------------------------------------------------


class TestOpenAIRequest:
    def test_body(self, openai_config, weather_tool):
        adapter = OpenAICompatibleAdapter(openai_config, ToolRegistry([weather_tool]))
        body = adapter.build_request(conversation(), stream=True)

        assert body["model"] == "gpt-test"
        assert body["stream"] is True
        assert body["stream_options"] == {"include_usage": True}
        assert body["tool_choice"] == "auto"
        assert body["tools"][0]["function"]["name"] == "get_weather"
        assert body["messages"][0] == {"role": "system", "content": "Be brief."}
        assert body["messages"][2]["tool_calls"][0]["id"] == "call_1"
        assert body["messages"][2]["content"] is None
        assert body["messages"][3] == {"role": "tool", "tool_call_id": "call_1", "content": "18C"}

    def test_non_streaming_and_options(self):
        config = ProviderConfig(
            provider_id="openai", model="m", base_url="http://x",
            temperature=0.2, provider_options={"openai": {"seed": 7}},
        )
        body = OpenAICompatibleAdapter(config).build_request([Message.user("hi")], stream=False)

        assert "stream_options" not in body
        assert "tools" not in body
        assert body["temperature"] == 0.2
        assert body["seed"] == 7

    def test_xai_search_parameters(self):
        config = profile_config(
            "xai", "grok-3", provider_options={"xai": {"search_parameters": {"mode": "on"}}},
        )
        body = XAIAdapter(config).build_request([Message.user("news?")], stream=True)
        assert body["search_parameters"] == {"mode": "on"}


class TestOpenAIParseResponse:
    def test_text_tool_calls_usage(self, openai_config):
        body = {
            "id": "chatcmpl-9",
            "model": "gpt-test",
            "choices": [{
                "index": 0,
                "message": {
                    "role": "assistant",
                    "content": "Checking.",
                    "reasoning_content": "User wants weather.",
                    "tool_calls": [{
                        "id": "call_a",
                        "type": "function",
                        "function": {"name": "get_weather", "arguments": '{"city": "Oslo"}'},
                    }],
                },
                "finish_reason": "tool_calls",
            }],
            "usage": {
                "prompt_tokens": 12,
                "completion_tokens": 8,
                "total_tokens": 20,
                "completion_tokens_details": {"reasoning_tokens": 3},
            },
        }
        response = OpenAICompatibleAdapter(openai_config).parse_response(body)

        assert response.text == "Checking."
        assert response.thinking == "User wants weather."
        assert response.tool_calls == [
            ToolCall(id="call_a", name="get_weather", arguments='{"city": "Oslo"}'),
        ]
        assert response.usage.total_tokens == 20
        assert response.usage.reasoning_tokens == 3
        assert response.provider_metadata == {
            "openai": {"id": "chatcmpl-9", "model": "gpt-test"},
        }
        assert response.finish_reason == "tool_calls"

    def test_think_tags(self):
        config = profile_config("groq", "qwen")
        body = {"choices": [{"message": {"content": "<think>a</think>b"}}]}
        response = OpenAICompatibleAdapter(config).parse_response(body)
        assert (response.text, response.thinking) == ("b", "a")

    def test_text_tool_call_fallback(self, weather_tool):
        config = profile_config(
            "openai_compatible", "m", base_url="http://x", parse_tool_calls_from_text=True,
        )
        body = {"choices": [{"message": {
            "content": '{"name": "get_weather", "arguments": {"city": "Oslo"}}',
        }}]}
        adapter = OpenAICompatibleAdapter(config, ToolRegistry([weather_tool]))
        response = adapter.parse_response(body)
        assert response.tool_calls == [
            ToolCall(id="call_get_weather", name="get_weather", arguments='{"city": "Oslo"}'),
        ]

    def test_fallback_needs_offered_tools(self):
        config = profile_config(
            "openai_compatible", "m", base_url="http://x", parse_tool_calls_from_text=True,
        )
        body = {"choices": [{"message": {"content": '{"name": "get_weather", "arguments": {}}'}}]}
        assert OpenAICompatibleAdapter(config).parse_response(body).tool_calls is None

    def test_xai_citations(self):
        body = {
            "citations": ["https://example.com/a"],
            "choices": [{"message": {"content": "News."}}],
        }
        response = XAIAdapter(profile_config("xai", "grok-3")).parse_response(body)
        assert response.provider_metadata["xai"]["citations"] == ["https://example.com/a"]


def test_invalid_record_skipped_with_warning(openai_config, caplog):
    adapter = OpenAICompatibleAdapter(openai_config)
    emitter = adapter.new_emitter()
    with caplog.at_level(logging.WARNING, logger="unillm.adapters"):
        parts = adapter.handle({"choices": "not a list"}, emitter)
    assert parts == []
    assert "Skipping invalid" in caplog.text


# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------


class TestAnthropicRequest:
    def test_body(self, weather_tool):
        config = profile_config("anthropic", "claude-test", reasoning=True, stop=["END"])
        adapter = AnthropicAdapter(config, ToolRegistry([weather_tool]))
        body = adapter.build_request(conversation(), stream=True)

        assert body["system"] == "Be brief."
        assert body["max_tokens"] == 4096
        assert body["stop_sequences"] == ["END"]
        assert body["thinking"] == {"type": "enabled", "budget_tokens": 1024}
        assert body["tools"][0]["input_schema"]["required"] == ["city"]
        assert [m["role"] for m in body["messages"]] == ["user", "assistant", "user"]
        assert body["messages"][1]["content"] == [{
            "type": "tool_use", "id": "call_1", "name": "get_weather", "input": {"city": "Oslo"},
        }]
        assert body["messages"][2]["content"][0]["type"] == "tool_result"
        assert body["messages"][2]["content"][0]["tool_use_id"] == "call_1"

    def test_consecutive_tool_results_share_one_turn(self):
        calls = [ToolCall(id="a", name="f"), ToolCall(id="b", name="f")]
        messages = [
            Message.user("go"),
            ToolCallRequestMessage(role=MessageRole.ASSISTANT, tool_calls=calls),
            ToolCallResultMessage(role=MessageRole.TOOL, content="1", tool_call_id="a"),
            ToolCallResultMessage(role=MessageRole.TOOL, content="2", tool_call_id="b"),
        ]
        body = AnthropicAdapter(profile_config("anthropic", "c")).build_request(messages, stream=False)

        assert len(body["messages"]) == 3
        assert [b["tool_use_id"] for b in body["messages"][2]["content"]] == ["a", "b"]


def test_anthropic_parse_response():
    body = {
        "id": "msg_1",
        "type": "message",
        "role": "assistant",
        "model": "claude-test",
        "content": [
            {"type": "thinking", "thinking": "Need weather.", "signature": "sig"},
            {"type": "text", "text": "Let me check."},
            {"type": "tool_use", "id": "toolu_1", "name": "get_weather", "input": {"city": "Oslo"}},
        ],
        "stop_reason": "tool_use",
        "usage": {"input_tokens": 20, "output_tokens": 9},
    }
    response = AnthropicAdapter(profile_config("anthropic", "claude-test")).parse_response(body)

    assert response.text == "Let me check."
    assert response.thinking == "Need weather."
    assert response.tool_calls == [
        ToolCall(id="toolu_1", name="get_weather", arguments='{"city": "Oslo"}'),
    ]
    assert response.usage.total_tokens == 29
    assert response.finish_reason == "tool_use"
    assert response.provider_metadata["anthropic"]["id"] == "msg_1"


# ---------------------------------------------------------------------------
# Ollama
# ---------------------------------------------------------------------------


class TestOllamaRequest:
    def test_body(self, weather_tool):
        config = profile_config(
            "ollama", "llama3", reasoning=True, temperature=0.1, max_tokens=64,
            provider_options={"ollama": {"keep_alive": "5m", "options": {"num_ctx": 8192}}},
        )
        body = OllamaAdapter(config, ToolRegistry([weather_tool])).build_request(conversation(), stream=True)

        assert body["think"] is True
        assert body["options"] == {"temperature": 0.1, "num_predict": 64, "num_ctx": 8192}
        assert body["keep_alive"] == "5m"
        assert body["tools"][0]["function"]["name"] == "get_weather"
        assert body["messages"][2]["tool_calls"] == [
            {"function": {"name": "get_weather", "arguments": {"city": "Oslo"}}},
        ]
        assert body["messages"][3] == {"role": "tool", "tool_name": "get_weather", "content": "18C"}


class TestOllamaParseResponse:
    def test_message(self):
        body = {
            "model": "llama3",
            "message": {
                "role": "assistant",
                "content": "",
                "thinking": "Use the tool.",
                "tool_calls": [
                    {"function": {"name": "get_weather", "arguments": {"city": "Oslo"}}},
                    {"function": {"name": "get_weather", "arguments": {"city": "Rome"}}},
                ],
            },
            "done": True,
            "done_reason": "stop",
            "prompt_eval_count": 30,
            "eval_count": 12,
        }
        response = OllamaAdapter(profile_config("ollama", "llama3")).parse_response(body)

        assert response.text is None
        assert response.thinking == "Use the tool."
        assert [c.id for c in response.tool_calls] == ["call_get_weather", "call_get_weather_1"]
        assert response.tool_calls[1].arguments == '{"city": "Rome"}'
        assert response.usage.total_tokens == 42
        assert response.finish_reason == "stop"
        assert response.provider_metadata["ollama"]["model"] == "llama3"

    def test_error_body_raises(self):
        with pytest.raises(ProviderError, match="model not found"):
            OllamaAdapter(profile_config("ollama", "x")).parse_response({"error": "model not found"})
