"""Prompt splitting tests.

Tests cover separator precedence, enumerator/bullet cleanup and the
single-prompt fallback.
"""

import pytest

from lumen.services.generation.messages import SYSTEM_PROMPT, build_messages
from lumen.services.generation.prompt_splitter import clean_prompt, split_prompts
from lumen.services.generation.prompt_validator import MAX_PROMPT_LENGTH, validate_prompt
from lumen.services.exceptions import ValidationError
from lumen.services.providers.base import VisionAnalysis


class TestSplitPrompts:
    def test_blank_lines_take_precedence(self):
        text = "A cat on a roof\nat dusk\n\nA dog; on a beach\n\nA bird"
        assert split_prompts(text) == ["A cat on a roof\nat dusk", "A dog; on a beach", "A bird"]

    def test_falls_back_to_single_newlines(self):
        assert split_prompts("1. First\n2. Second\n3) Third") == ["First", "Second", "Third"]

    def test_falls_back_to_semicolons(self):
        assert split_prompts("red car; blue car ;green car") == ["red car", "blue car", "green car"]

    def test_single_prompt(self):
        assert split_prompts("  just one prompt  ") == ["just one prompt"]

    def test_empty_output(self):
        assert split_prompts("") == []
        assert split_prompts(" \n\n - \n ") == []

    def test_bullets_and_blank_segments_are_dropped(self):
        text = "- Alpha\n\n\n\n- Beta\n\n  "
        assert split_prompts(text) == ["Alpha", "Beta"]

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("  3. Neon alley  ", "Neon alley"),
            ("12) Sunset", "Sunset"),
            ("- 1. - Layered", "Layered"),
            ("2024 skyline", "2024 skyline"),
            ("Version 2. of it", "Version 2. of it"),
        ],
    )
    def test_clean_prompt(self, raw, expected):
        assert clean_prompt(raw) == expected
        assert clean_prompt(clean_prompt(raw)) == clean_prompt(raw)


class TestValidatePrompt:
    def test_strips_and_returns(self):
        assert validate_prompt("  a castle  ") == "a castle"

    def test_rejects_empty_and_oversized(self):
        with pytest.raises(ValidationError):
            validate_prompt("   ")
        with pytest.raises(ValidationError, match="maximum length"):
            validate_prompt("x" * (MAX_PROMPT_LENGTH + 1))
        with pytest.raises(ValidationError):
            validate_prompt(None)  # type: ignore[arg-type]


class TestBuildMessages:
    def test_without_analyses(self):
        system, user = build_messages("a lamp", [])

        assert system.role == "system"
        assert system.content == SYSTEM_PROMPT
        assert user.role == "user"
        assert user.content == "Base Prompt: a lamp\n\nGenerate 4-6 creative variations:"

    def test_with_analyses(self):
        system, _ = build_messages(
            "a lamp",
            [
                VisionAnalysis(description="brass lamp", style_notes="warm"),
                VisionAnalysis(description="glass lamp", style_notes="cool"),
            ],
        )

        assert system.content.startswith(SYSTEM_PROMPT)
        assert "Image 1: brass lamp\nStyle Notes: warm\n" in system.content
        assert "Image 2: glass lamp\nStyle Notes: cool\n" in system.content
