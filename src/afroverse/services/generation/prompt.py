"""Style parameter validation for image generation.

Validates the opaque style parameters before they are sent to the provider.
"""

from afroverse.services.exceptions import InvalidInputError

MAX_PROMPT_LENGTH = 2000
QUALITY_TIERS = ("standard", "high")
ASPECT_RATIOS = ("1:1", "9:16")


def validate_prompt(prompt: object) -> str:
    """Validate prompt text for image generation.

    Args:
        prompt: Text prompt from the job's style parameters

    Returns:
        Validated prompt (unchanged if valid)

    Raises:
        InvalidInputError: If prompt is empty, not a string, or exceeds 2000 characters
    """
    if not prompt:
        raise InvalidInputError("Prompt cannot be empty or None")

    if not isinstance(prompt, str):
        raise InvalidInputError(f"Prompt must be a string, got {type(prompt).__name__}")

    if len(prompt) > MAX_PROMPT_LENGTH:
        raise InvalidInputError(
            f"Prompt exceeds maximum length of {MAX_PROMPT_LENGTH} characters (got {len(prompt)})"
        )

    return prompt


def build_refinement_prompt(instruction: object) -> str:
    """Wrap a refinement instruction so the provider keeps the base image intact."""
    instruction = validate_prompt(instruction)
    return (
        "Based on the provided image, apply the following change while keeping the same "
        f"person, style, and composition:\n\n{instruction}\n\n"
        "Important: Only apply the requested change. Keep everything else exactly the same."
    )


def resolve_render_options(style_parameters: dict) -> tuple[str, str]:
    """Extract (quality_tier, aspect_ratio) with defaults, rejecting unknown values."""
    quality = style_parameters.get("quality", "standard")
    aspect = style_parameters.get("aspect", "1:1")
    if quality not in QUALITY_TIERS:
        raise InvalidInputError(f"Unsupported quality tier: {quality!r}")
    if aspect not in ASPECT_RATIOS:
        raise InvalidInputError(f"Unsupported aspect ratio: {aspect!r}")
    return quality, aspect
