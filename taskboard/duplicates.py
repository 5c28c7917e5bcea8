"""Heuristic duplicate detection for newly entered tasks."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterable

from taskboard.todo_schema import Todo

PHONE_PATTERN = re.compile(r"(?:\+?1[-.\s]?)?(?:\(?\d{3}\)?[-.\s]?)?\d{3}[-.\s]?\d{4}")
EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
NAME_PATTERN = re.compile(r"\b[A-Z][a-z]{1,15}(?:\s[A-Z][a-z]{1,15})?\b")

MAX_MATCHES = 5

COMMON_WORDS = frozenset(
    {
        "The", "This", "That", "These", "Those",
        "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday",
        "January", "February", "March", "April", "May", "June", "July", "August",
        "September", "October", "November", "December",
        "Today", "Tomorrow", "Next", "Last", "Please", "Thanks", "Hello", "Dear",
        "Regards", "Sincerely", "Best", "Email", "Call", "Meeting", "Task", "Todo",
        "Note", "Important", "Urgent", "High", "Low", "Medium", "New", "Review",
        "Update", "Follow", "Check", "Send", "Create", "Delete", "Edit",
    }
)


def extract_phone_numbers(text: str) -> list[str]:
    digits = (re.sub(r"\D", "", match) for match in PHONE_PATTERN.findall(text))
    return [number for number in digits if len(number) >= 10]


def extract_emails(text: str) -> list[str]:
    return [match.lower() for match in EMAIL_PATTERN.findall(text)]


def extract_potential_names(text: str) -> list[str]:
    """Capitalized words (or pairs) that are not common sentence words."""
    return [
        match
        for match in NAME_PATTERN.findall(text)
        if match not in COMMON_WORDS and match.split(" ")[0] not in COMMON_WORDS
    ]


def string_similarity(first: str, second: str) -> float:
    left = first.lower()
    right = second.lower()
    if left == right:
        return 1.0
    if left in right or right in left:
        return 0.8
    left_words = {word for word in left.split() if len(word) > 2}
    right_words = {word for word in right.split() if len(word) > 2}
    if not left_words or not right_words:
        return 0.0
    return len(left_words & right_words) / max(len(left_words), len(right_words))


def _names_overlap(first: str, second: str) -> bool:
    left = first.lower()
    right = second.lower()
    return left == right or left in right or right in left


@dataclass(frozen=True)
class DuplicateMatch:
    todo: Todo
    score: float
    match_reasons: tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {
            "todo": self.todo.to_row(),
            "score": round(self.score, 4),
            "match_reasons": list(self.match_reasons),
        }


def find_potential_duplicates(
    text: str, todos: Iterable[Todo], threshold: float = 0.3
) -> list[DuplicateMatch]:
    new_phones = extract_phone_numbers(text)
    new_emails = extract_emails(text)
    new_names = extract_potential_names(text)

    matches: list[DuplicateMatch] = []
    for todo in todos:
        if todo.completed:
            continue
        combined = f"{todo.text} {todo.notes or ''} {todo.transcription or ''}"
        todo_phones = extract_phone_numbers(combined)
        todo_emails = extract_emails(combined)
        todo_names = extract_potential_names(combined)

        score = 0.0
        reasons: list[str] = []

        if any(
            existing == new or existing.endswith(new) or new.endswith(existing)
            for new in new_phones
            for existing in todo_phones
        ):
            score += 0.5
            reasons.append("Same phone number")

        if any(email in todo_emails for email in new_emails):
            score += 0.4
            reasons.append("Same email address")

        matched_name = next(
            (
                name
                for name in new_names
                if any(_names_overlap(name, existing) for existing in todo_names)
            ),
            None,
        )
        if matched_name is not None:
            score += 0.3
            reasons.append(f"Same customer: {matched_name}")

        similarity = string_similarity(text, todo.text)
        if similarity > 0.3:
            score += similarity * 0.2
            reasons.append("Similar task description")

        if score >= threshold and reasons:
            matches.append(DuplicateMatch(todo, score, tuple(reasons)))

    matches.sort(key=lambda match: match.score, reverse=True)
    return matches[:MAX_MATCHES]


def should_check_for_duplicates(text: str) -> bool:
    return bool(
        extract_phone_numbers(text) or extract_emails(text) or extract_potential_names(text)
    )
