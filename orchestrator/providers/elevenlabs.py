"""ElevenLabs text-to-speech."""

from __future__ import annotations

from typing import Any

from .. import http
from ..config import settings
from ..errors import ProviderNotConfiguredError

API_BASE = "https://api.elevenlabs.io/v1"
DEFAULT_VOICE_ID = "21m00Tcm4TlvDq8ikWAM"  # Rachel
DEFAULT_MODEL_ID = "eleven_monolingual_v1"


class ElevenLabsService:
    def __init__(self, api_key: str | None = None) -> None:
        self.api_key = api_key if api_key is not None else settings.elevenlabs_api_key

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _headers(self, **extra: str) -> dict[str, str]:
        if not self.api_key:
            raise ProviderNotConfiguredError("ElevenLabs API key not configured")
        return {"xi-api-key": self.api_key, **extra}

    async def text_to_speech(
        self,
        text: str,
        voice_id: str = DEFAULT_VOICE_ID,
        model_id: str = DEFAULT_MODEL_ID,
        stability: float = 0.5,
        similarity_boost: float = 0.75,
    ) -> dict[str, Any]:
        headers = self._headers(Accept="audio/mpeg", **{"Content-Type": "application/json"})
        resp = await http.request(
            "POST",
            f"{API_BASE}/text-to-speech/{voice_id}",
            headers=headers,
            json_body={
                "text": text,
                "model_id": model_id,
                "voice_settings": {"stability": stability, "similarity_boost": similarity_boost},
            },
        )
        audio = resp.content
        return {"audio": audio, "content_type": "audio/mpeg", "size": len(audio)}

    async def list_voices(self) -> list[dict[str, Any]]:
        data = await http.request_json("GET", f"{API_BASE}/voices", headers=self._headers())
        return [
            {
                "id": voice.get("voice_id"),
                "name": voice.get("name"),
                "category": voice.get("category"),
                "labels": voice.get("labels") or {},
            }
            for voice in (data or {}).get("voices", [])
        ]
