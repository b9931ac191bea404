"""Tests for prompts.py"""

import pytest

from app.core.prompts import get_default_prompt, get_prompt


class TestPromptRegistry:
    """Tests for prompt lookup and rendering."""

    def test_unknown_key(self):
        assert get_default_prompt("nope") is None
        with pytest.raises(KeyError):
            get_prompt("nope")

    def test_render_declared_variables(self):
        text = get_prompt("digest_user").render(count=2, items_json="[]")
        assert text.startswith("Here are 2 recent AI news items")
        assert text.endswith("[]")

    def test_render_missing_variable(self):
        with pytest.raises(KeyError, match="items_json"):
            get_prompt("digest_user").render(count=2)

    def test_render_unexpected_variable(self):
        with pytest.raises(KeyError, match="extra"):
            get_prompt("digest_system").render(extra=1)
