"""Runtime behaviour flags for the tutor and post-response guardrails.

System prompts stay fixed. Everything that varies per student (grade level,
verbosity, safety mode, ...) is expressed as flags, rendered into a context
block appended to the system prompt, and enforced again on the response.
"""

import re
from dataclasses import asdict, dataclass
from typing import Any, Literal

Subject = Literal["math", "science", "reading", "history", "planner", "general"]
Modality = Literal["chat", "voice"]
EFMode = Literal["off", "light", "standard", "high"]
Verbosity = Literal["short", "normal"]
HelpPhase = Literal["orient", "guide", "reflect"]
SafetyMode = Literal["strict", "standard"]
ToneBias = Literal["encouraging", "neutral"]

SUBJECT_EXAMPLES: dict[str, list[str]] = {
    "math": ["numbers", "equations", "word problems"],
    "science": ["experiments", "observations", "hypotheses"],
    "reading": ["stories", "characters", "themes"],
    "history": ["events", "people", "causes"],
    "planner": ["tasks", "time", "priorities"],
    "general": ["any topic"],
}

_EF_INTENSITY = {"off": 0.0, "light": 0.25, "standard": 0.5, "high": 0.75}

_SENTENCE_RE = re.compile(r"[^.!?]+[.!?]+")
_URL_RE = re.compile(r"https?://\S+", re.IGNORECASE)
_DIRECT_ANSWER_PATTERNS = [
    re.compile(r"the answer is", re.IGNORECASE),
    re.compile(r"^the solution is", re.IGNORECASE),
    re.compile(r"here's the answer", re.IGNORECASE),
    re.compile(r"it equals", re.IGNORECASE),
    re.compile(r"the correct answer", re.IGNORECASE),
]

SOCRATIC_REDIRECT = "Let's think through this together. What's the first step you might try?"


@dataclass(frozen=True)
class BehaviorFlags:
    subject: Subject = "general"
    grade_level: int = 6
    modality: Modality = "chat"
    ef_mode: EFMode = "standard"
    verbosity: Verbosity = "normal"
    help_phase: HelpPhase = "orient"
    safety_mode: SafetyMode = "strict"
    tone: ToneBias = "encouraging"


DEFAULT_BEHAVIOR = BehaviorFlags()


def max_sentences(verbosity: str) -> int:
    return 2 if verbosity == "short" else 5


def build_context_flags(flags: BehaviorFlags) -> dict[str, Any]:
    """Structured context derived from the flags."""
    return {
        "role": "tutor",
        "method": "socratic",
        **asdict(flags),
        "examples": SUBJECT_EXAMPLES.get(flags.subject, SUBJECT_EXAMPLES["general"]),
        "max_sentences": max_sentences(flags.verbosity),
        "pacing": "fast" if flags.modality == "voice" else "conversational",
        "ef_intensity": _EF_INTENSITY[flags.ef_mode],
    }


def render_context(flags: BehaviorFlags, confidence_level: int | None = None) -> str:
    """Context block appended to the tutor system prompt."""
    context = build_context_flags(flags)
    lines = [
        "Student context:",
        f"- Grade level: {context['grade_level']}",
        f"- Subject: {context['subject']} (use {', '.join(context['examples'])} as examples)",
        f"- Keep replies to at most {context['max_sentences']} sentences",
        f"- Pacing: {context['pacing']}",
        f"- Tone: {context['tone']}",
        f"- Help phase: {context['help_phase']}",
    ]
    if confidence_level is not None:
        lines.append(f"- Self-reported confidence: {confidence_level}/5")
        if confidence_level <= 2:
            lines.append("- The student is unsure: break the problem into very small steps")
    if context["ef_intensity"] > 0:
        lines.append("- Where natural, prompt the student to plan their next step")
    return "\n".join(lines)


def sanitize_response(response: str, flags: BehaviorFlags) -> str:
    output = response

    limit = max_sentences(flags.verbosity)
    sentences = _SENTENCE_RE.findall(output) or [output]
    if len(sentences) > limit:
        output = " ".join(s.strip() for s in sentences[:limit])

    if flags.safety_mode == "strict":
        output = re.sub(r"\[UNSAFE\]", "", output, flags=re.IGNORECASE)
        output = _URL_RE.sub("[link removed]", output)

    if flags.ef_mode != "off":
        output = re.sub(r"executive function", "planning", output, flags=re.IGNORECASE)

    return output.strip()


def contains_direct_answer(response: str) -> bool:
    return any(pattern.search(response) for pattern in _DIRECT_ANSWER_PATTERNS)


def apply_guardrails(response: str, flags: BehaviorFlags) -> tuple[str, list[str]]:
    """Sanitize ``response`` and enforce the Socratic method.

    Returns the final response and a list of warnings for logging.
    """
    warnings: list[str] = []
    output = sanitize_response(response, flags)

    if flags.help_phase != "reflect" and contains_direct_answer(output):
        output = SOCRATIC_REDIRECT
        warnings.append("Downgraded to guide phase")

    lowered = output.lower()
    if "i think" in lowered or "probably" in lowered:
        warnings.append("Uncertain response detected")

    return output, warnings
