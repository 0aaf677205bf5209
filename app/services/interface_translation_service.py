"""Translations for the fixed strings of the public menu page."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from openai import APIError

from app.services.llm_client import MenuModelClient
from app.services.menu_store import MenuStore, StoreError

logger = logging.getLogger(__name__)

INTERFACE_TRANSLATION_MAX_TOKENS = 200
INTERFACE_TRANSLATION_TEMPERATURE = 0.3

BASE_TRANSLATIONS: Dict[str, str] = {
    "our_menus": "Our Menus",
    "no_menus_available": "No menus available at the moment.",
    "leave_review": "Leave us a review",
    "write_review_google": "Write a review on Google",
    "contact": "Contact",
    "follow_us": "Follow us",
    "our_location": "Our location",
    "powered_by": "Powered by",
    "all_rights_reserved": "All rights reserved.",
}
INTERFACE_KEYS = tuple(BASE_TRANSLATIONS)


class InterfaceTranslationError(RuntimeError):
    status_code = 500

    def __init__(self, message: str, *, status_code: Optional[int] = None, details: Any = None) -> None:
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code
        self.details = details

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": str(self)}
        if self.details is not None:
            payload["details"] = self.details
        return payload


async def translate_interface(
    store: MenuStore,
    model: MenuModelClient,
    *,
    language_code: Optional[str],
    language_name: Optional[str],
) -> Dict[str, Any]:
    """Create the interface strings missing for ``language_code``."""

    if not language_code:
        raise InterfaceTranslationError("Language code is required", status_code=400)

    existing = set(await store.fetch_interface_keys(language_code))
    missing = [key for key in INTERFACE_KEYS if key not in existing]
    if not missing:
        return {"message": "All translations already exist", "languageCode": language_code}

    target = language_name or language_code
    rows: List[Dict[str, str]] = []
    for key in missing:
        base_text = BASE_TRANSLATIONS[key]
        rows.append(
            {
                "language_code": language_code,
                "translation_key": key,
                "translated_text": await _translate_text(model, base_text, target),
            }
        )

    try:
        await store.insert_interface_translations(rows)
    except StoreError as exc:
        logger.error("Interface translations insert failed: %s", exc)
        raise InterfaceTranslationError("Failed to save translations", details=str(exc)) from exc

    return {
        "success": True,
        "message": f"Successfully created {len(rows)} translations for {language_code}",
        "translations": rows,
    }


async def _translate_text(model: MenuModelClient, text: str, target: str) -> str:
    system = (
        f"You are a professional translator. Translate the text to {target}. "
        "Only provide the translation, nothing else. Keep it natural and culturally appropriate."
    )
    try:
        reply = await model.complete(
            text,
            system=system,
            max_tokens=INTERFACE_TRANSLATION_MAX_TOKENS,
            temperature=INTERFACE_TRANSLATION_TEMPERATURE,
        )
    except APIError as exc:
        logger.warning("Interface string translation failed, keeping base text: %s", exc)
        return text
    return reply.strip() or text


__all__ = ["BASE_TRANSLATIONS", "INTERFACE_KEYS", "InterfaceTranslationError", "translate_interface"]
