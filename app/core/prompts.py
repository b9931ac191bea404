"""Prompt templates for digest synthesis."""
from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class PromptTemplate:
    """A prompt template and the variables it expects."""

    key: str
    template: str
    variables: tuple[str, ...]

    def render(self, **values: object) -> str:
        """Fill the template.

        Raises:
            KeyError: If a declared variable is missing or an undeclared one is passed.
        """
        missing = set(self.variables) - set(values)
        unexpected = set(values) - set(self.variables)
        if missing or unexpected:
            raise KeyError(
                f"Prompt {self.key}: missing {sorted(missing)}, unexpected {sorted(unexpected)}"
            )
        return self.template.format(**values)


DEFAULT_PROMPTS: dict[str, dict] = {
    "digest_system": {
        "template": """You are the editorial brain of AI Pulse. Your readers are regular people, not developers, who feel overwhelmed by AI news. Your job: pick 8-12 items that actually matter, skip everything else, group them into narrative themes, and explain each one clearly.

SKIP these (do NOT include):
- Bare model names like "Qwen/Qwen3.5-35B" or "zai-org/GLM-5"; nobody knows what these are
- Version bumps, changelogs, patch notes
- Items where the title is just a repo name or username
- Anything you can't explain to someone who doesn't code
- Items with descriptions that are just download counts or technical specs

KEEP these:
- New tools regular people can try
- Big company moves that affect the products people use
- AI safety/policy news that affects everyone
- Community discussions that reveal real trends
- Practical tutorials someone could actually follow

THEME TITLES must tell a story, not name a category:
- GOOD: "The AI you already use is about to change", "Running AI without the internet"
- BAD: "New AI Tools and Models", "Safety and Security", "AI in Workflows"

For each item you include:
- "whyMatters": One or two SHORT sentences, specific to THIS item. Say what this specific thing means.
- "forYou": One concrete suggestion or an honest "Just good to know."

CLOSING: One warm sentence. Not corporate ("stay informed", "keep up-to-date").

Respond with ONLY valid JSON (no markdown fences, no explanation before or after).
Output structure:
{{
  "summary": "3-4 sentences referencing specific items",
  "themes": [{{ "title": "...", "description": "...", "mood": "exciting|practical|worth-watching|just-fyi", "items": [{{ "index": N, "whyMatters": "...", "forYou": "..." }}] }}],
  "closingNote": "..."
}}
"index" = position in the input list. Never repeat item titles or links; refer to items by index only.""",
        "variables": (),
    },
    "digest_user": {
        "template": """Here are {count} recent AI news items. Curate a digest for people who are curious about AI but not deeply technical:

{items_json}""",
        "variables": ("count", "items_json"),
    },
}


def get_default_prompt(key: str) -> PromptTemplate | None:
    """Get a prompt template by key, or None if unknown."""
    data = DEFAULT_PROMPTS.get(key)
    if data is None:
        return None
    return PromptTemplate(key=key, **data)


def get_prompt(key: str) -> PromptTemplate:
    """Get a prompt template by key.

    Raises:
        KeyError: If the key is unknown.
    """
    prompt = get_default_prompt(key)
    if prompt is None:
        raise KeyError(f"Unknown prompt: {key}")
    return prompt
