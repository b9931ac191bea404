"""Keyword relevance scoring and category assignment for feed items.

Both functions are pure: the result depends only on (title, description).
Matching is case-insensitive substring containment with no tokenization,
so overlapping keywords count once each ("fine-tuning" scores for both
"fine-tun" and "tuning").
"""

from __future__ import annotations

from enum import Enum

MAX_SCORE = 100


class FeedCategory(str, Enum):
    """Closed set of item categories."""

    SAFETY = "safety"
    WORKFLOWS = "workflows"
    TUTORIALS = "tutorials"
    TOOLS = "tools"
    OPENSOURCE = "opensource"
    NEWS = "news"


DEFAULT_CATEGORY = FeedCategory.NEWS

# Points per keyword. Higher = more central to what readers care about.
KEYWORD_SCORES: dict[str, int] = {
    "agent": 15,
    "claude": 12,
    "anthropic": 12,
    "mcp": 12,
    "cursor": 10,
    "copilot": 10,
    "chatgpt": 10,
    "openai": 10,
    "gemini": 10,
    "prompt": 10,
    "workflow": 10,
    "automation": 8,
    "fine-tun": 8,
    "tuning": 4,
    "llama": 8,
    "open source": 8,
    "open-source": 8,
    "local model": 8,
    "gpt": 8,
    "llm": 8,
    "language model": 8,
    "safety": 8,
    "alignment": 8,
    "tutorial": 6,
    "how to": 6,
    "guide": 5,
    "benchmark": 5,
    "reasoning": 5,
    "inference": 5,
    "embedding": 4,
    "machine learning": 4,
    "neural": 3,
    "model": 3,
    "artificial intelligence": 3,
}

# Evaluated in order; the first set with a match wins.
CATEGORY_RULES: tuple[tuple[FeedCategory, tuple[str, ...]], ...] = (
    (
        FeedCategory.SAFETY,
        ("safety", "alignment", "regulation", "policy", "ethics", "jailbreak", "risk", "misuse"),
    ),
    (
        FeedCategory.WORKFLOWS,
        ("workflow", "productivity", "automation", "agent", "pipeline", "use case", "i use", "my setup"),
    ),
    (
        FeedCategory.TUTORIALS,
        ("tutorial", "guide", "how to", "learn", "course", "walkthrough", "explained", "step-by-step"),
    ),
    (
        FeedCategory.TOOLS,
        ("tool", "app", "launch", "release", "product", "plugin", "extension", "api", "sdk"),
    ),
    (
        FeedCategory.OPENSOURCE,
        ("open source", "open-source", "github", "hugging face", "weights", "llama", "mistral", "gguf"),
    ),
)


def score_relevance(title: str, description: str) -> int:
    """Sum keyword points present in the text, capped at MAX_SCORE."""
    text = f"{title} {description}".lower()
    score = sum(points for keyword, points in KEYWORD_SCORES.items() if keyword in text)
    return min(score, MAX_SCORE)


def categorize(title: str, description: str) -> FeedCategory:
    """Return the first category whose keyword set matches, else the default."""
    text = f"{title} {description}".lower()
    for category, keywords in CATEGORY_RULES:
        if any(keyword in text for keyword in keywords):
            return category
    return DEFAULT_CATEGORY


def classify(title: str | None, description: str | None) -> tuple[FeedCategory, int]:
    """Classify an item by its text.

    Args:
        title: Item title (None treated as empty)
        description: Plain-text description (None treated as empty)

    Returns:
        Tuple of (category, relevance score 0-100)
    """
    title = title or ""
    description = description or ""
    return categorize(title, description), score_relevance(title, description)
