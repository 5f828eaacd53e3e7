"""Prompt validation for image generation.

Validates base prompts before a generation job is accepted.
"""

from lumen.services.exceptions import ValidationError

MAX_PROMPT_LENGTH = 4000


def validate_prompt(prompt: str) -> str:
    """Validate the base prompt of a generation request.

    Args:
        prompt: Text prompt from the user

    Returns:
        Prompt with surrounding whitespace removed

    Raises:
        ValidationError: If prompt is empty, not a string, or exceeds MAX_PROMPT_LENGTH
    """
    if not isinstance(prompt, str):
        raise ValidationError(f"base_prompt must be a string, got {type(prompt).__name__}")

    prompt = prompt.strip()
    if not prompt:
        raise ValidationError("base_prompt is required")

    if len(prompt) > MAX_PROMPT_LENGTH:
        raise ValidationError(
            f"base_prompt exceeds maximum length of {MAX_PROMPT_LENGTH} characters (got {len(prompt)})"
        )

    return prompt
