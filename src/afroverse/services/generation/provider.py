"""Generation provider interface and Replicate implementation."""

import asyncio
import io
from dataclasses import dataclass
from typing import Any, Protocol, Sequence

import httpx
import replicate
from replicate.exceptions import ReplicateError as ReplicateAPIError

from afroverse.services.exceptions import (
    ProviderBlockedError,
    ProviderError,
    ProviderRateLimitedError,
)

_BLOCK_MARKERS = ("content policy", "nsfw", "safety", "blocked", "inappropriate")


@dataclass(frozen=True)
class ProviderOutput:
    """Raw output of one successful provider call."""

    image: bytes
    request_id: str | None = None
    content_type: str = "image/png"


class GenerationProvider(Protocol):
    """Capability contract for the external image generation service."""

    name: str

    def model_for(self, quality_tier: str) -> str: ...

    async def generate(
        self,
        prompt: str,
        references: Sequence[bytes],
        quality_tier: str = "standard",
        aspect_ratio: str = "1:1",
    ) -> ProviderOutput: ...


def _error_from_message(message: str, request_id: str | None = None) -> ProviderError:
    """Map a provider-reported failure message to a provider error type.

    This is the only place provider free text is inspected.
    """
    lowered = message.lower()
    if any(marker in lowered for marker in _BLOCK_MARKERS):
        return ProviderBlockedError(message, request_id=request_id)
    if "rate limit" in lowered or "429" in lowered:
        return ProviderRateLimitedError(message, status_code=429, request_id=request_id)
    return ProviderError(message, request_id=request_id)


class ReplicateProvider:
    """Generation provider backed by Replicate predictions."""

    name = "replicate"

    def __init__(
        self,
        api_token: str,
        model: str = "google/nano-banana",
        high_quality_model: str | None = None,
        timeout: float = 120.0,
    ):
        """Initialize Replicate provider.

        Args:
            api_token: Replicate API authentication token
            model: Model identifier for the standard quality tier
            high_quality_model: Model identifier for the high quality tier (default: same model)
            timeout: Timeout in seconds for downloading the output image
        """
        self.api_token = api_token
        self.model = model
        self.high_quality_model = high_quality_model or model
        self.timeout = timeout

    def model_for(self, quality_tier: str) -> str:
        return self.high_quality_model if quality_tier == "high" else self.model

    async def generate(
        self,
        prompt: str,
        references: Sequence[bytes],
        quality_tier: str = "standard",
        aspect_ratio: str = "1:1",
    ) -> ProviderOutput:
        """Generate an image from a prompt and reference images.

        Args:
            prompt: Text prompt, passed through verbatim
            references: Reference image bytes (source uploads, base version for refinements)
            quality_tier: "standard" or "high"; selects the model
            aspect_ratio: "1:1" or "9:16"

        Returns:
            ProviderOutput with image bytes and the Replicate prediction id

        Raises:
            ProviderBlockedError: Prompt or references refused by the safety filter
            ProviderRateLimitedError: Replicate throttled the request (429)
            ProviderError: Any other provider failure
        """
        if not self.api_token:
            raise ProviderError("REPLICATE_API_TOKEN not configured", status_code=401)

        model = self.model_for(quality_tier)
        model_input: dict[str, Any] = {
            "prompt": prompt,
            "aspect_ratio": aspect_ratio,
            "output_format": "png",
        }
        if references:
            model_input["image_input"] = [io.BytesIO(ref) for ref in references]

        def _run_prediction() -> Any:
            # SDK is synchronous; runs in a worker thread
            client = replicate.Client(api_token=self.api_token)
            prediction = client.models.predictions.create(model=model, input=model_input)
            prediction.wait()
            return prediction

        try:
            prediction = await asyncio.to_thread(_run_prediction)
        except ReplicateAPIError as e:
            status_code = getattr(e, "status", None)
            if status_code == 429:
                raise ProviderRateLimitedError(str(e), status_code=429) from e
            classified = _error_from_message(str(e))
            classified.status_code = status_code
            raise classified from e

        if prediction.status != "succeeded":
            raise _error_from_message(
                str(prediction.error or f"Prediction {prediction.status}"),
                request_id=prediction.id,
            )

        output = prediction.output
        if isinstance(output, list) and len(output) > 0:
            image_url = str(output[0])
        elif isinstance(output, str):
            image_url = output
        else:
            raise ProviderError(
                f"Unexpected output format from Replicate: {type(output)}",
                request_id=prediction.id,
            )

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.get(image_url)
            response.raise_for_status()

        return ProviderOutput(
            image=response.content,
            request_id=prediction.id,
            content_type=response.headers.get("content-type", "image/png"),
        )
