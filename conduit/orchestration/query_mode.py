"""Classify an incoming user message once, at run start."""

import re

from conduit.orchestration.models import QueryMode

ANALYSIS_KEYWORDS = (
    "analyze",
    "analyse",
    "analysis",
    "analyzing",
    "analysing",
    "summary",
    "summarize",
    "breakdown",
    "break down",
    "insights",
    "compare",
    "comparison",
    "comparing",
    "trend",
    "growth",
    "change over",
    "versus",
    "vs",
    "against",
    "best",
    "worst",
    "overview",
    "dashboard",
    "detailed",
    "comprehensive",
    "full picture",
    "explain",
    "why",
    "what does this mean",
    "interpret",
    "evaluation",
    "assessment",
    "deep dive",
    "performance review",
    "forecast",
    "predict",
)

# Whole words only, allowing plural and tense endings ("trends", "predicted").
ANALYSIS_PATTERN = re.compile(
    r"\b(?:"
    + "|".join(re.escape(keyword) for keyword in ANALYSIS_KEYWORDS)
    + r")(?:s|es|d|ed|ing)?\b"
)

SIMPLE_PATTERNS = (
    re.compile(r"^(get|show|list|find|give me)\s+.*\d+\s+\w+"),
    re.compile(r"^how many\s+"),
    re.compile(r"^(count|total)\s+"),
    re.compile(r"^(what is|what's)\s+.*\s+(count|total|number)"),
    re.compile(r"^(show me|list)\s+[^,]*$"),
)

SMALL_TALK = (
    "hi",
    "hello",
    "hey",
    "thanks",
    "thank you",
    "bye",
    "help",
    "what can you do",
    "who are you",
    "how do you work",
)


def _normalize(message: str) -> str:
    return " ".join(message.lower().split())


def classify_query_mode(message: str) -> QueryMode:
    """Return ANALYSIS when the message asks for interpretation, else SIMPLE.

    Analysis keywords win over simple patterns: "show me a breakdown of
    revenue" is analytical even though it starts like a lookup.
    """
    if ANALYSIS_PATTERN.search(_normalize(message)):
        return QueryMode.ANALYSIS
    return QueryMode.SIMPLE


def matches_simple_pattern(message: str) -> bool:
    """Whether the message is a plain lookup ("how many ...", "count ...")."""
    text = _normalize(message)
    return any(pattern.search(text) for pattern in SIMPLE_PATTERNS)


def should_offer_tools(message: str) -> bool:
    """False only for bare greetings and small talk."""
    text = _normalize(message).rstrip("!?.")
    return text not in SMALL_TALK
