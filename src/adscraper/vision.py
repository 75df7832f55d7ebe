from __future__ import annotations

import base64
import logging

import httpx
import instructor
from instructor.function_calls import Mode
from openai import OpenAI
from pydantic import BaseModel, Field

from core.config import settings
from core.errors import NotConfigured, VisionError
from core.metrics import record_vision_call

logger = logging.getLogger(__name__)

_PROMPT = (
    "Analyze this Google ad image and extract the text it shows. "
    "Only include fields that are clearly visible; use an empty string for anything not found."
)


class AdVisionFields(BaseModel):
    headline: str = Field("", description="main headline or title text")
    description: str = Field("", description="body text or description")
    call_to_action: str = Field("", description="button text such as 'Shop Now' or 'Learn More'")
    visible_url: str = Field("", description="displayed URL such as 'www.example.com'")
    brand_name: str = Field("", description="brand or company name if visible")
    all_text: str = Field("", description="all text in the ad combined")


def extract_ad_fields(image_url: str) -> AdVisionFields:
    """Read ad copy off an image with a vision-capable chat model.

    Blocking; callers on the event loop go through ``asyncio.to_thread``.
    """

    if not settings.openai_api_key:
        raise NotConfigured("vision")
    image_ref = _inline_image(image_url) if settings.vision_inline_images else image_url

    try:
        client = instructor.patch(
            OpenAI(api_key=settings.openai_api_key, timeout=settings.vision_timeout_ms / 1000),
            mode=Mode.TOOLS,
        )
        response = client.chat.completions.create(
            model=settings.vision_model,
            temperature=settings.vision_temperature,
            max_tokens=settings.vision_max_tokens,
            response_model=AdVisionFields,
            messages=[
                {
                    "role": "user",
                    "content": [
                        {"type": "image_url", "image_url": {"url": image_ref}},
                        {"type": "text", "text": _PROMPT},
                    ],
                }
            ],
        )
    except Exception as exc:
        record_vision_call(settings.vision_model, "failed")
        raise VisionError("vision_failed", f"Vision API error: {exc}") from exc

    record_vision_call(settings.vision_model, "success", _total_tokens(response))
    return response


def _inline_image(image_url: str) -> str:
    try:
        with httpx.Client(timeout=settings.vision_image_timeout_ms / 1000, follow_redirects=True) as client:
            response = client.get(image_url, headers={"User-Agent": settings.browser_user_agent})
            response.raise_for_status()
    except httpx.HTTPError as exc:
        record_vision_call(settings.vision_model, "image_failed")
        raise VisionError("image_fetch_failed", "Failed to fetch image") from exc
    media_type = response.headers.get("content-type", "image/png").split(";")[0].strip() or "image/png"
    encoded = base64.b64encode(response.content).decode("ascii")
    return f"data:{media_type};base64,{encoded}"


def _total_tokens(response) -> int | None:
    raw = getattr(response, "_raw_response", None)
    usage = getattr(raw, "usage", None) if raw is not None else None
    return getattr(usage, "total_tokens", None) if usage is not None else None
