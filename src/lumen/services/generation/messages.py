"""LLM message construction for prompt variation generation."""

from lumen.services.providers.base import ChatMessage, VisionAnalysis

SYSTEM_PROMPT = (
    "You are a creative prompt engineer for AI image generation. Given a base prompt "
    "and optional reference image analysis, generate 4-6 detailed, creative variations "
    "of prompts. Each prompt should be unique and optimized for image generation.\n\n"
    "Format: Separate each prompt with a blank line (double newline)."
)


def build_messages(base_prompt: str, analyses: list[VisionAnalysis]) -> list[ChatMessage]:
    """System instructions (with any reference analysis) plus the user's base prompt."""
    system = SYSTEM_PROMPT
    if analyses:
        system += "\n\nReference Image Analysis:\n"
        for index, analysis in enumerate(analyses, start=1):
            system += f"Image {index}: {analysis.description}\nStyle Notes: {analysis.style_notes}\n"

    return [
        ChatMessage(role="system", content=system),
        ChatMessage(
            role="user",
            content=f"Base Prompt: {base_prompt}\n\nGenerate 4-6 creative variations:",
        ),
    ]
