"""Turn free text (email, voicemail, message) into subtasks.

With an LLM client the text is sent to the Anthropic Messages API and the
JSON reply is validated; without one a line-splitting heuristic is used.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from typing import Any

import httpx

from taskboard.errors import TaskboardError
from taskboard.todo_schema import DEFAULT_PRIORITY, TODO_PRIORITIES

logger = logging.getLogger(__name__)

ANTHROPIC_API_URL = "https://api.anthropic.com"
ANTHROPIC_VERSION = "2023-06-01"
DEFAULT_MODEL = "claude-sonnet-4-20250514"
MAX_TOKENS = 1200

MIN_CONTENT_LENGTH = 10
MAX_SUBTASKS = 10
MAX_FALLBACK_SUBTASKS = 8
MAX_SUBTASK_TEXT = 200
MAX_SUMMARY = 300
MIN_ESTIMATE = 5
MAX_ESTIMATE = 480

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)
_FALLBACK_SPLIT = re.compile(r"[.\n]+")

PROMPT_TEMPLATE = """You are a task extraction assistant. Analyze this {label} and extract ALL distinct action items as subtasks for a parent task.

{parent}

{label_title} content:
\"\"\"
{content}
\"\"\"

Today's date: {today}

For each subtask provide:
1. A clear, actionable description starting with an action verb
2. Priority (low, medium, high, urgent) inferred from the language
3. Estimated minutes to complete (5, 10, 15, 30, 45, 60, 90, 120)

Respond ONLY with valid JSON (no markdown, no code blocks):
{{
  "subtasks": [
    {{"text": "Action item description", "priority": "medium", "estimatedMinutes": 15}}
  ],
  "summary": "Brief summary of what this content is about"
}}

Rules:
- Extract 2-10 subtasks depending on content complexity
- Each subtask should be independently completable
- Keep subtask text under 100 characters
- Order by logical sequence or priority

Respond with ONLY the JSON object."""


class AnthropicClient:
    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        *,
        base_url: str = ANTHROPIC_API_URL,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._model = model
        self._http = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers={
                "x-api-key": api_key,
                "anthropic-version": ANTHROPIC_VERSION,
                "content-type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        self._http.close()

    def complete(self, prompt: str, max_tokens: int = MAX_TOKENS) -> str:
        response = self._http.post(
            "/v1/messages",
            json={
                "model": self._model,
                "max_tokens": max_tokens,
                "messages": [{"role": "user", "content": prompt}],
            },
        )
        response.raise_for_status()
        body = response.json()
        for block in body.get("content") or []:
            if block.get("type") == "text":
                return block.get("text") or ""
        return ""


def _content_label(content_type: str | None) -> str:
    if content_type == "email":
        return "email"
    if content_type == "voicemail":
        return "voicemail transcription"
    return "message"


def build_prompt(content: str, content_type: str | None, parent_task_text: str | None) -> str:
    label = _content_label(content_type)
    return PROMPT_TEMPLATE.format(
        label=label,
        label_title=label[:1].upper() + label[1:],
        parent=f'Parent task context: "{parent_task_text}"' if parent_task_text else "",
        content=content,
        today=datetime.now(timezone.utc).date().isoformat(),
    )


def fallback_subtasks(content: str) -> list[dict[str, Any]]:
    lines = [line.strip() for line in _FALLBACK_SPLIT.split(content)]
    lines = [line for line in lines if 5 < len(line) < MAX_SUBTASK_TEXT]
    subtasks = [
        {"text": line, "priority": DEFAULT_PRIORITY} for line in lines[:MAX_FALLBACK_SUBTASKS]
    ]
    if not subtasks:
        subtasks = [{"text": content[:MAX_SUBTASK_TEXT], "priority": DEFAULT_PRIORITY}]
    return subtasks


def _clean_subtask(raw: Any) -> dict[str, Any] | None:
    if not isinstance(raw, dict):
        return None
    text = str(raw.get("text") or "")[:MAX_SUBTASK_TEXT]
    if not text:
        return None
    priority = raw.get("priority")
    subtask: dict[str, Any] = {
        "text": text,
        "priority": priority if priority in TODO_PRIORITIES else DEFAULT_PRIORITY,
    }
    estimate = raw.get("estimatedMinutes")
    if isinstance(estimate, (int, float)) and not isinstance(estimate, bool):
        subtask["estimatedMinutes"] = int(min(max(estimate, MIN_ESTIMATE), MAX_ESTIMATE))
    return subtask


def parse_reply(reply: str) -> dict[str, Any]:
    match = _JSON_OBJECT.search(reply)
    if match is None:
        logger.error("AI reply did not contain a JSON object")
        raise TaskboardError("AI_PARSE_FAILED", "Failed to parse AI response.", {})
    try:
        result = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        logger.error("AI reply was not valid JSON: %s", exc)
        raise TaskboardError(
            "AI_PARSE_FAILED", "Failed to parse AI response.", {"error": str(exc)}
        ) from exc
    if not isinstance(result, dict):
        raise TaskboardError("AI_PARSE_FAILED", "Failed to parse AI response.", {})

    raw_subtasks = result.get("subtasks") or []
    if not isinstance(raw_subtasks, list):
        raw_subtasks = []
    subtasks = [
        cleaned
        for cleaned in (_clean_subtask(item) for item in raw_subtasks[:MAX_SUBTASKS])
        if cleaned is not None
    ]
    if not subtasks:
        raise TaskboardError(
            "NO_SUBTASKS",
            "Could not extract any action items from this content.",
            {},
        )
    return {
        "subtasks": subtasks,
        "summary": str(result.get("summary") or "")[:MAX_SUMMARY],
    }


def parse_content_to_subtasks(
    content: Any,
    content_type: str | None = None,
    parent_task_text: str | None = None,
    client: AnthropicClient | None = None,
) -> dict[str, Any]:
    if not content or not isinstance(content, str):
        raise TaskboardError("CONTENT_REQUIRED", "Content is required.", {"fields": ["content"]})
    if len(content.strip()) < MIN_CONTENT_LENGTH:
        raise TaskboardError(
            "CONTENT_TOO_SHORT",
            "Content is too short to parse into subtasks.",
            {"min_length": MIN_CONTENT_LENGTH},
        )

    if client is None:
        return {"subtasks": fallback_subtasks(content), "summary": ""}

    try:
        reply = client.complete(build_prompt(content, content_type, parent_task_text))
    except httpx.HTTPError as exc:
        logger.error("AI request failed: %s", exc)
        raise TaskboardError(
            "AI_REQUEST_FAILED", "Failed to parse content.", {"error": str(exc)}
        ) from exc
    return parse_reply(reply)
