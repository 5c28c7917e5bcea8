import json

import httpx
import pytest

from taskboard.ai_parse import (
    AnthropicClient,
    build_prompt,
    fallback_subtasks,
    parse_content_to_subtasks,
    parse_reply,
)
from taskboard.errors import TaskboardError

EMAIL = (
    "Hi, please send the updated auto quote to Pat by Friday.\n"
    "Also confirm the new VIN on the policy."
)


def _client(handler):
    return AnthropicClient("sk-test", transport=httpx.MockTransport(handler))


def _reply(text):
    return httpx.Response(200, json={"content": [{"type": "text", "text": text}]})


def test_client_posts_messages_request():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return _reply('{"subtasks": [{"text": "Send quote"}], "summary": "Quote"}')

    result = parse_content_to_subtasks(EMAIL, "email", "Pat renewal", _client(handler))

    assert seen["path"] == "/v1/messages"
    assert seen["headers"]["x-api-key"] == "sk-test"
    assert seen["headers"]["anthropic-version"] == "2023-06-01"
    assert seen["body"]["messages"][0]["role"] == "user"
    assert 'Parent task context: "Pat renewal"' in seen["body"]["messages"][0]["content"]
    assert result == {
        "subtasks": [{"text": "Send quote", "priority": "medium"}],
        "summary": "Quote",
    }


def test_build_prompt_labels_content_type():
    prompt = build_prompt("call me back", "voicemail", None)

    assert "Analyze this voicemail transcription" in prompt
    assert "Voicemail transcription content:" in prompt
    assert "Parent task context" not in prompt


def test_parse_reply_cleans_subtasks():
    subtasks = [
        {"text": "x" * 250, "priority": "critical", "estimatedMinutes": 1},
        {"text": "Call Pat", "priority": "urgent", "estimatedMinutes": 900},
        {"text": ""},
        "not a dict",
    ] + [{"text": f"extra {index}"} for index in range(12)]
    reply = "Here you go:\n" + json.dumps({"subtasks": subtasks, "summary": "s" * 400})

    result = parse_reply(reply)

    assert len(result["subtasks"]) == 8
    assert result["subtasks"][0] == {
        "text": "x" * 200,
        "priority": "medium",
        "estimatedMinutes": 5,
    }
    assert result["subtasks"][1]["estimatedMinutes"] == 480
    assert len(result["summary"]) == 300


@pytest.mark.parametrize(
    "reply, code",
    [
        ("no json here", "AI_PARSE_FAILED"),
        ("{not: valid}", "AI_PARSE_FAILED"),
        ('{"subtasks": []}', "NO_SUBTASKS"),
    ],
)
def test_parse_reply_errors(reply, code):
    with pytest.raises(TaskboardError) as excinfo:
        parse_reply(reply)

    assert excinfo.value.code == code


def test_fallback_splits_sentences():
    subtasks = fallback_subtasks(EMAIL)

    assert [item["text"] for item in subtasks] == [
        "Hi, please send the updated auto quote to Pat by Friday",
        "Also confirm the new VIN on the policy",
    ]
    assert fallback_subtasks("ok. fine. yes.") == [
        {"text": "ok. fine. yes.", "priority": "medium"}
    ]


def test_without_client_uses_fallback():
    result = parse_content_to_subtasks(EMAIL)

    assert result["summary"] == ""
    assert len(result["subtasks"]) == 2


@pytest.mark.parametrize(
    "content, code",
    [(None, "CONTENT_REQUIRED"), ("", "CONTENT_REQUIRED"), ("   short  ", "CONTENT_TOO_SHORT")],
)
def test_content_validation(content, code):
    with pytest.raises(TaskboardError) as excinfo:
        parse_content_to_subtasks(content)

    assert excinfo.value.code == code


def test_http_failure_maps_to_request_failed():
    client = _client(lambda request: httpx.Response(529, json={"error": "overloaded"}))

    with pytest.raises(TaskboardError) as excinfo:
        parse_content_to_subtasks(EMAIL, client=client)

    assert excinfo.value.code == "AI_REQUEST_FAILED"
