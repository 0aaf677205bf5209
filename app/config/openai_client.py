"""OpenAI client configuration for menu extraction and translation."""

import os
from functools import lru_cache

from dotenv import load_dotenv
from openai import OpenAI

load_dotenv()

MENU_VISION_MODEL = os.getenv("MENU_VISION_MODEL", "gpt-4o")
MENU_TRANSLATION_MODEL = os.getenv("MENU_TRANSLATION_MODEL", "gpt-4o-mini")


def has_api_key() -> bool:
    return bool(os.getenv("OPENAI_API_KEY"))


@lru_cache(maxsize=1)
def get_openai_client() -> OpenAI:
    """Return the shared OpenAI client.

    SDK-level retries are disabled: callers own their retry policy.
    """
    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        raise RuntimeError("OPENAI_API_KEY is missing from the environment")
    return OpenAI(api_key=api_key, max_retries=0)


__all__ = [
    "get_openai_client",
    "has_api_key",
    "MENU_VISION_MODEL",
    "MENU_TRANSLATION_MODEL",
]
