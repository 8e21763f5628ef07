"""Sanitization and prompt-injection screening for user text sent to the model."""

import re

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_ZERO_WIDTH = re.compile(r"[\u200b-\u200d\ufeff]")
_EXTRA_NEWLINES = re.compile(r"\n{3,}")

_INJECTION_PATTERNS = [
    # Instruction overrides
    re.compile(r"ignore\s+(previous|all|above)\s+instructions?", re.IGNORECASE),
    re.compile(r"disregard\s+(previous|all)", re.IGNORECASE),
    re.compile(r"forget\s+(everything|all)", re.IGNORECASE),
    # Role manipulation
    re.compile(r"you\s+are\s+now\s+(a|an)\b", re.IGNORECASE),
    re.compile(r"system\s*:\s*you\s+are", re.IGNORECASE),
    re.compile(r"pretend\s+to\s+be", re.IGNORECASE),
    # System prompt extraction
    re.compile(r"show\s+(me\s+)?your\s+(system\s+)?prompt", re.IGNORECASE),
    re.compile(r"repeat\s+(your|the)\s+instructions", re.IGNORECASE),
    # Special tokens
    re.compile(r"<\|.*?\|>"),
    re.compile(r"\[INST\]", re.IGNORECASE),
    re.compile(r"<<SYS>>", re.IGNORECASE),
]


class PromptInjectionError(ValueError):
    """User input looks like an attempt to override the tutor's instructions."""

    def __init__(self, field: str = "input") -> None:
        super().__init__(f"Invalid content in {field}")
        self.field = field


class EmptyInputError(ValueError):
    """Required user input has nothing left once sanitized."""

    def __init__(self, field: str = "input") -> None:
        super().__init__(f"{field.replace('_', ' ').capitalize()} is empty")
        self.field = field


def sanitize(text: str, max_length: int = 10000) -> str:
    if not isinstance(text, str):
        return ""
    text = _CONTROL_CHARS.sub("", text)
    text = _ZERO_WIDTH.sub("", text)
    text = _EXTRA_NEWLINES.sub("\n\n", text)
    return text.strip()[:max_length]


def detect_prompt_injection(text: str) -> bool:
    return any(pattern.search(text) for pattern in _INJECTION_PATTERNS)


def clean_user_input(text: str, field: str = "input", max_length: int = 10000, required: bool = True) -> str:
    """Sanitize ``text`` and raise ``PromptInjectionError`` if it is suspicious.

    A ``required`` field that sanitizes to nothing raises ``EmptyInputError``.
    """
    cleaned = sanitize(text, max_length)
    if required and not cleaned:
        raise EmptyInputError(field)
    if detect_prompt_injection(cleaned):
        raise PromptInjectionError(field)
    return cleaned
