"""Post-processing hook applied between provider output and blob storage.

A post-processor turns one generated image into named variants (for example a
watermarked original and a thumbnail). Each variant is stored separately and
its ref recorded on the version under the variant name.
"""

from typing import Awaitable, Callable

PRIMARY_VARIANT = "image"

PostProcessor = Callable[[bytes], Awaitable[dict[str, bytes]]]


async def passthrough(image: bytes) -> dict[str, bytes]:
    """Default post-processor: store the provider output unchanged."""
    return {PRIMARY_VARIANT: image}


def variant_suffix(variant: str) -> str:
    """File name suffix for a variant ("" for the primary image)."""
    return "" if variant == PRIMARY_VARIANT else f"_{variant}"


_EXTENSIONS = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/webp": ".webp",
}


def media_type(content_type: str | None) -> str:
    """Normalize a Content-Type header value ("image/jpeg; charset=binary" -> "image/jpeg")."""
    if not content_type:
        return "image/png"
    return content_type.split(";", 1)[0].strip().lower() or "image/png"


def extension_for(content_type: str | None) -> str:
    """File extension for a stored variant; unknown image types keep ".png"."""
    return _EXTENSIONS.get(media_type(content_type), ".png")
