"""Thin gateway over the OpenAI chat completions API."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from openai import OpenAI

from app.config.openai_client import MENU_TRANSLATION_MODEL, MENU_VISION_MODEL, get_openai_client

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ImageAttachment:
    """Base64 payload sent alongside a prompt."""

    data: str
    media_type: str = "image/jpeg"

    @property
    def data_url(self) -> str:
        return f"data:{self.media_type};base64,{self.data}"


class MenuModelClient:
    """Send single-turn prompts to the language model and return the reply text.

    SDK exceptions (``RateLimitError``, ``APITimeoutError``, ``APIStatusError``,
    ``APIConnectionError``) are left to the caller.
    """

    def __init__(
        self,
        client: Optional[OpenAI] = None,
        *,
        vision_model: str = MENU_VISION_MODEL,
        text_model: str = MENU_TRANSLATION_MODEL,
    ) -> None:
        self._client = client
        self.vision_model = vision_model
        self.text_model = text_model

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            self._client = get_openai_client()
        return self._client

    async def complete(
        self,
        prompt: str,
        *,
        max_tokens: int,
        image: Optional[ImageAttachment] = None,
        system: Optional[str] = None,
        temperature: Optional[float] = None,
        timeout: Optional[float] = None,
    ) -> str:
        messages: List[Dict[str, Any]] = []
        if system:
            messages.append({"role": "system", "content": system})
        if image is None:
            messages.append({"role": "user", "content": prompt})
        else:
            messages.append(
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompt},
                        {"type": "image_url", "image_url": {"url": image.data_url}},
                    ],
                }
            )

        options: Dict[str, Any] = {
            "model": self.vision_model if image is not None else self.text_model,
            "max_tokens": max_tokens,
            "messages": messages,
        }
        if temperature is not None:
            options["temperature"] = temperature
        if timeout is not None:
            options["timeout"] = timeout

        completion = await asyncio.to_thread(self.client.chat.completions.create, **options)
        if not completion.choices:
            return ""
        return completion.choices[0].message.content or ""


def get_model_client() -> MenuModelClient:
    """FastAPI dependency returning the default model gateway."""
    return MenuModelClient()


__all__ = ["ImageAttachment", "MenuModelClient", "get_model_client"]
