"""Translate a menu's title, categories and items into another language."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from openai import APIError
from pydantic import ValidationError

from app.schemas import TranslateMenuRequest, TranslationUnit
from app.services.llm_client import MenuModelClient
from app.services.menu_store import MenuStore
from app.services.postgrest_client import extract_bearer_token

logger = logging.getLogger(__name__)

SOURCE_LANGUAGE = "French"
TITLE_MAX_TOKENS = 100
BATCH_MAX_TOKENS = 4096
DEFAULT_MENU_TITLE = "Menu"
QUOTE_CHARACTERS = "\"'“”‘’«»"

CODE_FENCE_PATTERN = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)


class MenuTranslationError(RuntimeError):
    """Raised when a menu cannot be translated."""


@dataclass(frozen=True)
class TranslationResult:
    message: str
    already_exists: bool = False
    menu_title: Optional[str] = None
    categories_count: int = 0
    items_count: int = 0

    def to_payload(self) -> Dict[str, Any]:
        if self.already_exists:
            return {"success": True, "message": self.message}
        return {
            "success": True,
            "message": self.message,
            "menuTitle": self.menu_title,
            "categoriesCount": self.categories_count,
            "itemsCount": self.items_count,
        }


async def authenticate_caller(store: MenuStore, authorization: Optional[str]) -> str:
    token = extract_bearer_token(authorization)
    user_id = await store.get_user_id(token)
    if not user_id:
        raise MenuTranslationError("Unauthorized")
    return user_id


def parse_translate_request(raw_body: bytes) -> TranslateMenuRequest:
    try:
        return TranslateMenuRequest.model_validate_json(raw_body)
    except ValidationError as exc:
        errors = exc.errors()
        reason = errors[0]["msg"] if errors else "unreadable payload"
        raise MenuTranslationError(f"Invalid request body: {reason}") from exc


async def translate_menu(
    store: MenuStore,
    model: MenuModelClient,
    *,
    authorization: Optional[str],
    menu_id: Optional[str],
    target_language: Optional[str],
    language_name: Optional[str],
) -> TranslationResult:
    user_id = await authenticate_caller(store, authorization)
    return await translate_owned_menu(
        store,
        model,
        user_id=user_id,
        menu_id=menu_id,
        target_language=target_language,
        language_name=language_name,
    )


async def translate_owned_menu(
    store: MenuStore,
    model: MenuModelClient,
    *,
    user_id: str,
    menu_id: Optional[str],
    target_language: Optional[str],
    language_name: Optional[str],
) -> TranslationResult:
    """Translate every text of the caller's menu and persist the result.

    The ``menu_languages`` row is written first so the language is reserved;
    if a later step fails, rows written by this call are removed again.
    """

    if not menu_id or not target_language:
        raise MenuTranslationError("menuId and targetLanguage are required")
    language_label = language_name or target_language

    menu = await store.fetch_owned_menu(menu_id, user_id)
    if not menu:
        raise MenuTranslationError("Menu not found or access denied")

    if await store.language_exists(menu_id, target_language):
        logger.info("Menu %s already has language %s", menu_id, target_language)
        return TranslationResult(message="Language already exists", already_exists=True)

    source_title = menu.get("menu_name") or menu.get("nom") or DEFAULT_MENU_TITLE
    menu_title = await translate_title(model, source_title, language_label)

    await store.insert_menu_language(
        {
            "menu_id": menu_id,
            "language_code": target_language,
            "is_default": False,
            "menu_title": menu_title,
        }
    )

    category_rows: List[Dict[str, Any]] = []
    item_rows: List[Dict[str, Any]] = []
    inserted_categories: List[str] = []
    inserted_items: List[str] = []
    completed = False
    try:
        categories = await store.fetch_categories(menu_id)
        items = await store.fetch_menu_items([str(category["id"]) for category in categories])
        units = build_translation_units(categories, items)
        logger.info(
            "Translating menu %s to %s: %s categories, %s items",
            menu_id,
            target_language,
            len(categories),
            len(items),
        )

        if units:
            try:
                reply = await model.complete(
                    build_batch_prompt(units, language_label),
                    max_tokens=BATCH_MAX_TOKENS,
                )
            except APIError as exc:
                logger.error("Menu translation request failed: %s", exc)
                raise MenuTranslationError("Translation API failed") from exc
            category_rows, item_rows = partition_translations(parse_translation_reply(reply), target_language)

        if category_rows:
            await store.insert_category_translations(category_rows)
            inserted_categories = [row["category_id"] for row in category_rows]
        if item_rows:
            await store.insert_item_translations(item_rows)
            inserted_items = [row["menu_item_id"] for row in item_rows]
        completed = True
    finally:
        if not completed:
            await _rollback(
                store,
                menu_id=menu_id,
                language_code=target_language,
                category_ids=inserted_categories,
                item_ids=inserted_items,
            )

    return TranslationResult(
        message=f"Translated to {language_label}",
        menu_title=menu_title,
        categories_count=len(category_rows),
        items_count=len(item_rows),
    )


async def translate_title(model: MenuModelClient, title: str, language_label: str) -> str:
    prompt = (
        f"Translate this restaurant menu title from {SOURCE_LANGUAGE} to {language_label}. "
        f'Return ONLY the translated text, nothing else: "{title}"'
    )
    try:
        reply = await model.complete(prompt, max_tokens=TITLE_MAX_TOKENS)
    except APIError as exc:
        logger.error("Menu title translation failed: %s", exc)
        raise MenuTranslationError("Menu title translation failed") from exc
    return clean_title(reply) or title


def clean_title(reply: str) -> str:
    """Trim the reply and drop the quotes the model tends to wrap it in."""
    return (reply or "").strip().strip(QUOTE_CHARACTERS).strip()


def build_translation_units(
    categories: Sequence[Dict[str, Any]],
    items: Sequence[Dict[str, Any]],
) -> List[Dict[str, Any]]:
    units = [
        {
            "type": "category",
            "id": category["id"],
            "name": category.get("nom"),
            "description": category.get("description") or "",
        }
        for category in categories
    ]
    units.extend(
        {
            "type": "item",
            "id": item["id"],
            "name": item.get("nom"),
            "description": item.get("description") or "",
        }
        for item in items
    )
    return units


def build_batch_prompt(units: Sequence[Dict[str, Any]], language_label: str) -> str:
    return (
        f"Translate the following restaurant menu items from {SOURCE_LANGUAGE} to {language_label}. "
        "Return ONLY a JSON array with the same structure, preserving the 'type' and 'id' fields, "
        "but translating the 'name' and 'description' fields. "
        "Keep culinary terms natural and authentic when appropriate.\n\n"
        f"{json.dumps(list(units), ensure_ascii=False, indent=2)}"
    )


def parse_translation_reply(raw_text: str) -> List[Dict[str, Any]]:
    """Parse the JSON array in a fenced block if there is one, else the whole reply."""

    match = CODE_FENCE_PATTERN.search(raw_text or "")
    candidate = match.group(1) if match else (raw_text or "")
    try:
        payload = json.loads(candidate.strip())
    except json.JSONDecodeError as exc:
        logger.warning("Translation reply is not valid JSON: %s", (raw_text or "")[:280])
        raise MenuTranslationError("Failed to parse translation response") from exc
    if not isinstance(payload, list):
        raise MenuTranslationError("Translation response is not a JSON array")
    return payload


def partition_translations(
    translated: Sequence[Any],
    language_code: str,
) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    """Split translated units into category and item translation rows."""

    category_rows: List[Dict[str, Any]] = []
    item_rows: List[Dict[str, Any]] = []
    for entry in translated:
        try:
            unit = TranslationUnit.model_validate(entry)
        except ValidationError as exc:
            raise MenuTranslationError("Translation response has an unexpected structure") from exc
        row = {"language_code": language_code, "nom": unit.name, "description": unit.description}
        if unit.type == "category":
            category_rows.append({"category_id": unit.id, **row})
        elif unit.type == "item":
            item_rows.append({"menu_item_id": unit.id, **row})
        else:
            logger.warning("Ignoring translated unit with unknown type %r", unit.type)
    return category_rows, item_rows


async def _rollback(
    store: MenuStore,
    *,
    menu_id: str,
    language_code: str,
    category_ids: List[str],
    item_ids: List[str],
) -> None:
    """Best-effort removal of the rows written before the failure."""

    logger.warning("Rolling back translation of menu %s to %s", menu_id, language_code)
    try:
        await store.delete_translations(language_code, category_ids=category_ids, item_ids=item_ids)
    except Exception:
        logger.warning("Unable to rollback translations for menu %s", menu_id, exc_info=True)
    try:
        await store.delete_menu_language(menu_id, language_code)
    except Exception:
        logger.warning("Unable to rollback language %s for menu %s", language_code, menu_id, exc_info=True)


__all__ = [
    "MenuTranslationError",
    "TranslationResult",
    "authenticate_caller",
    "build_batch_prompt",
    "build_translation_units",
    "clean_title",
    "parse_translation_reply",
    "parse_translate_request",
    "partition_translations",
    "translate_menu",
    "translate_owned_menu",
    "translate_title",
]
