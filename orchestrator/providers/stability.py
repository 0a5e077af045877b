"""Stability AI text-to-image generation."""

from __future__ import annotations

from typing import Any

from .. import http
from ..config import settings
from ..errors import ProviderNotConfiguredError

API_BASE = "https://api.stability.ai"
SDXL_ENGINE = "stable-diffusion-xl-1024-v1-0"


class StabilityService:
    def __init__(self, api_key: str | None = None) -> None:
        self.api_key = api_key if api_key is not None else settings.stability_api_key

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def generate_image(
        self,
        prompt: str,
        width: int = 1024,
        height: int = 1024,
        steps: int = 30,
        cfg_scale: float = 7,
        style_preset: str = "photographic",
    ) -> dict[str, Any]:
        if not self.api_key:
            raise ProviderNotConfiguredError("Stability API key not configured")

        data = await http.request_json(
            "POST",
            f"{API_BASE}/v1/generation/{SDXL_ENGINE}/text-to-image",
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
            json_body={
                "text_prompts": [{"text": prompt, "weight": 1}],
                "cfg_scale": cfg_scale,
                "width": width,
                "height": height,
                "steps": steps,
                "style_preset": style_preset,
            },
        )
        return {
            "images": [
                {"base64": art.get("base64"), "seed": art.get("seed")}
                for art in (data or {}).get("artifacts", [])
            ],
            "prompt": prompt,
            "options": {
                "width": width,
                "height": height,
                "steps": steps,
                "cfg_scale": cfg_scale,
                "style_preset": style_preset,
            },
        }
