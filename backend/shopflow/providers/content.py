"""
Marketing content generation.

Captions and an image prompt come from the text-generation fallback chain as
a single JSON object; the image itself comes from fal.ai's queue API, which
is polled until the request completes.

Approximate cost per product: $0.01 captions + $0.04 image.
"""

import asyncio
import json
import logging
import re
import time

import httpx

from shopflow.config import settings
from shopflow.errors import ContentGenerationError
from shopflow.providers.base import CaptionBundle, GeneratedImage, ProductSnapshot
from shopflow.providers.llm import FallbackTextGenerator

logger = logging.getLogger(__name__)

CAPTION_COST = 0.01
IMAGE_COST = 0.04
FAL_QUEUE_URL = "https://queue.fal.run"

_JSON_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)

CHANNEL_CHAR_LIMITS = {"instagram": 2200, "facebook": 500, "pinterest": 500}


def _price(value: float | None) -> str:
    return f"{value:.2f}" if value else "??"


def fallback_caption(product: ProductSnapshot) -> str:
    """Deterministic caption used when no text provider produces copy."""
    title = product.title or "New Arrival"
    price = _price(product.price)
    save = f"\nWas ${_price(product.compare_price)}, now ${price}!" if product.compare_price else ""
    category = (product.category or "lifestyle").replace(" ", "")
    return (
        f"New Drop: {title}{save}\n${price} at {settings.store_name}\n\n"
        f"#{settings.store_name.replace(' ', '')} #{category} #shopnow #trending"
    )


def _caption_prompt(product: ProductSnapshot) -> str:
    return f"""You are an e-commerce social media copywriter for {settings.store_name}.

Generate marketing captions for this product:
- Title: {product.title}
- Price: ${_price(product.price)}
- Category: {product.category or "General"}
- Description: {product.description[:500] or "No description"}

Return ONLY valid JSON (no markdown):
{{
  "instagram": "Instagram caption, engaging, 150-200 chars, include a CTA",
  "facebook": "Facebook post, conversational, 200-280 chars",
  "pinterest": "Pinterest description, keyword-rich, 100-160 chars",
  "hashtags": ["8", "to", "12", "hashtags", "without", "the", "hash"],
  "cta": "Short call to action",
  "imagePrompt": "Detailed prompt for a photorealistic square lifestyle photo of the product in use. No text overlays."
}}"""


class MarketingContentGenerator:
    def __init__(self, text: FallbackTextGenerator, fal_api_key: str | None = None, fal_model: str | None = None,
                 transport: httpx.AsyncBaseTransport | None = None, poll_interval: float = 3.0, max_wait: float = 120.0):
        self.text = text
        self.fal_api_key = fal_api_key if fal_api_key is not None else settings.fal_api_key
        self.fal_model = fal_model or settings.fal_model
        self._transport = transport
        self.poll_interval = poll_interval
        self.max_wait = max_wait

    async def generate_captions_and_image_prompt(self, product: ProductSnapshot) -> CaptionBundle:
        raw = await self.text.generate(_caption_prompt(product), max_tokens=600)
        if not raw:
            raise ContentGenerationError("No text provider returned captions")

        match = _JSON_OBJECT_RE.search(raw)
        if not match:
            raise ContentGenerationError("Failed to parse caption JSON")
        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError as exc:
            raise ContentGenerationError(f"Invalid caption JSON: {exc}") from exc

        if not any(data.get(k) for k in ("instagram", "facebook", "pinterest")):
            raise ContentGenerationError("Caption JSON has no captions")

        hashtags = [str(h).lstrip("#") for h in data.get("hashtags") or []]
        return CaptionBundle(
            instagram=data.get("instagram", ""),
            facebook=data.get("facebook", ""),
            pinterest=data.get("pinterest", ""),
            hashtags=hashtags,
            cta=data.get("cta") or f"Shop now at {settings.store_name}",
            image_prompt=data.get("imagePrompt") or data.get("image_prompt") or "",
        )

    async def generate_image(self, prompt: str) -> GeneratedImage:
        if not self.fal_api_key:
            raise ContentGenerationError("fal.ai key not configured")
        if not prompt:
            raise ContentGenerationError("No image prompt")

        headers = {"Authorization": f"Key {self.fal_api_key}"}
        async with httpx.AsyncClient(timeout=httpx.Timeout(60.0, connect=10.0), transport=self._transport) as client:
            resp = await client.post(
                f"{FAL_QUEUE_URL}/{self.fal_model}",
                headers=headers,
                json={
                    "prompt": prompt,
                    "image_size": "square_hd",
                    "num_images": 1,
                    "enable_safety_checker": True,
                    "output_format": "jpeg",
                },
            )
            resp.raise_for_status()
            data = resp.json()

            request_id = data.get("request_id")
            if not request_id:
                url = self._image_url(data)
                if not url:
                    raise ContentGenerationError("No image URL in fal.ai response")
                return GeneratedImage(url=url, cost=IMAGE_COST)

            url = await self._poll(client, headers, request_id)
        return GeneratedImage(url=url, cost=IMAGE_COST)

    async def _poll(self, client: httpx.AsyncClient, headers: dict, request_id: str) -> str:
        base = f"{FAL_QUEUE_URL}/{self.fal_model}/requests/{request_id}"
        deadline = time.monotonic() + self.max_wait

        while time.monotonic() < deadline:
            await asyncio.sleep(self.poll_interval)
            resp = await client.get(f"{base}/status", headers=headers)
            if resp.status_code == 404:
                continue
            resp.raise_for_status()
            status = resp.json().get("status")

            if status == "COMPLETED":
                result = await client.get(base, headers=headers)
                result.raise_for_status()
                url = self._image_url(result.json())
                if not url:
                    raise ContentGenerationError("fal.ai completed without an image URL")
                return url
            if status == "FAILED":
                raise ContentGenerationError(f"fal.ai generation failed: {resp.json().get('error', 'unknown')}")

        raise ContentGenerationError(f"fal.ai generation timed out after {self.max_wait:.0f}s")

    @staticmethod
    def _image_url(data: dict) -> str | None:
        images = data.get("images") or []
        return images[0].get("url") if images else None


class AICopywriter:
    """Per-channel social copy from the text chain, with a fixed fallback."""

    def __init__(self, text: FallbackTextGenerator):
        self.text = text

    async def write(self, product: ProductSnapshot, channel: str) -> str:
        limit = CHANNEL_CHAR_LIMITS.get(channel, 500)
        was = f"Was: ${_price(product.compare_price)}\n" if product.compare_price else ""
        prompt = (
            f"You are a social media copywriter for {settings.store_name}. "
            f"Write a {channel} post that drives clicks. Modern, confident tone, max 3 emojis.\n\n"
            f"Title: {product.title}\nPrice: ${_price(product.price)}\n{was}"
            f"Category: {product.category or 'lifestyle'}\n"
            f"Description: {product.description[:300]}\n\n"
            f"Max {limit} chars. Include 3-5 hashtags and a CTA. Return ONLY the post text."
        )
        copy = await self.text.generate(prompt, max_tokens=300)
        if not copy:
            return fallback_caption(product)
        return copy[:limit]
