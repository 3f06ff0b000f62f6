from __future__ import annotations

import asyncio
import json
import logging
from typing import List, Optional, Protocol

import websockets
from websockets.exceptions import WebSocketException

from ..config import ProviderConfig
from ..models.direction import TranslationDirection
from ..utils.dict_utils import first_present
from .errors import ChannelConnectError

logger = logging.getLogger(__name__)

TEXT_PROMPT = "Translate the following text into {target}. Output ONLY the translation: {text}"


class TextTranslator(Protocol):
    """One-shot translation used by the manual text entry path."""

    async def translate(self, text: str, direction: TranslationDirection) -> str:
        ...


class LiveTextTranslator:
    """Translates a single text turn over a short-lived text-only Live connection."""

    def __init__(self, provider: ProviderConfig, timeout_s: Optional[float] = None):
        self.provider = provider
        self.timeout_s = timeout_s or provider.connect_timeout_s * 3

    async def translate(self, text: str, direction: TranslationDirection) -> str:
        if not self.provider.api_key:
            raise ChannelConnectError("No API key configured (set GEMINI_API_KEY)")
        return await asyncio.wait_for(self._translate(text, direction), timeout=self.timeout_s)

    async def _translate(self, text: str, direction: TranslationDirection) -> str:
        setup = {
            "setup": {
                "model": self.provider.text_model,
                "generationConfig": {"responseModalities": ["TEXT"]},
            }
        }
        turn = {
            "clientContent": {
                "turns": [
                    {
                        "role": "user",
                        "parts": [{"text": TEXT_PROMPT.format(target=direction.target_language, text=text)}],
                    }
                ],
                "turnComplete": True,
            }
        }

        try:
            async with websockets.connect(
                f"{self.provider.endpoint}?key={self.provider.api_key}",
                open_timeout=self.provider.connect_timeout_s,
            ) as ws:
                await ws.send(json.dumps(setup))
                pieces: List[str] = []
                async for raw in ws:
                    message = json.loads(raw)
                    if first_present(message, "setupComplete", "setup_complete") is not None:
                        await ws.send(json.dumps(turn))
                        continue
                    content = first_present(message, "serverContent", "server_content") or {}
                    model_turn = first_present(content, "modelTurn", "model_turn") or {}
                    for part in model_turn.get("parts") or []:
                        if isinstance(part, dict) and part.get("text"):
                            pieces.append(part["text"])
                    if first_present(content, "turnComplete", "turn_complete"):
                        break
        except (OSError, WebSocketException) as exc:
            raise ChannelConnectError(f"Text translation failed: {exc}") from exc

        translation = "".join(pieces).strip()
        logger.info("Text translation to %s finished (%s chars)", direction.target_language, len(translation))
        return translation


__all__ = ["LiveTextTranslator", "TEXT_PROMPT", "TextTranslator"]
