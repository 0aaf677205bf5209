"""Supabase-backed persistence for menus, languages and translations."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Sequence, TypeVar

from httpx import HTTPError as HttpxError
from postgrest import APIError as PostgrestAPIError
from supabase import Client
from supabase_auth.errors import AuthError

from app.config.supabase_client import get_supabase_client
from app.services.postgrest_client import postgrest_status

logger = logging.getLogger(__name__)
T = TypeVar("T")

MENU_COLUMNS = "id,user_id,default_language,menu_name,nom"


class StoreError(RuntimeError):
    """Raised when the backend store rejects or cannot serve a request."""


class MenuStore:
    """Operations the translation pipelines need from the backend store."""

    async def get_user_id(self, access_token: str) -> Optional[str]:
        raise NotImplementedError

    async def fetch_owned_menu(self, menu_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    async def language_exists(self, menu_id: str, language_code: str) -> bool:
        raise NotImplementedError

    async def insert_menu_language(self, row: Dict[str, Any]) -> None:
        raise NotImplementedError

    async def delete_menu_language(self, menu_id: str, language_code: str) -> None:
        raise NotImplementedError

    async def fetch_categories(self, menu_id: str) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def fetch_menu_items(self, category_ids: Sequence[str]) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def insert_category_translations(self, rows: List[Dict[str, Any]]) -> None:
        raise NotImplementedError

    async def insert_item_translations(self, rows: List[Dict[str, Any]]) -> None:
        raise NotImplementedError

    async def delete_translations(
        self,
        language_code: str,
        *,
        category_ids: Sequence[str] = (),
        item_ids: Sequence[str] = (),
    ) -> None:
        raise NotImplementedError

    async def fetch_interface_keys(self, language_code: str) -> List[str]:
        raise NotImplementedError

    async def insert_interface_translations(self, rows: List[Dict[str, Any]]) -> None:
        raise NotImplementedError


class SupabaseMenuStore(MenuStore):
    """Store implementation running supabase-py calls in worker threads."""

    def __init__(self, client: Optional[Client] = None) -> None:
        self._client = client

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = get_supabase_client()
        if self._client is None:
            raise StoreError("Supabase client is not configured.")
        return self._client

    async def _run(self, operation: Callable[[], T], *, label: str) -> T:
        start = time.monotonic()
        try:
            result = await asyncio.to_thread(operation)
        except PostgrestAPIError as exc:
            logger.error("%s failed (%s): %s", label, postgrest_status(exc), exc.message)
            raise StoreError(exc.message or f"{label} failed") from exc
        except HttpxError as exc:
            logger.error("%s unreachable: %s", label, exc)
            raise StoreError("Supabase unreachable.") from exc
        logger.debug("%s succeeded in %.2fms", label, (time.monotonic() - start) * 1000)
        return result

    async def _read(
        self,
        operation: Callable[[], T],
        *,
        label: str,
        retries: int = 2,
        backoff_seconds: Sequence[float] = (0.2, 0.5, 1.0),
    ) -> T:
        """Run an idempotent read, retrying transport failures with a short backoff."""

        attempts = retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return await self._run(operation, label=label)
            except StoreError as exc:
                if not isinstance(exc.__cause__, HttpxError) or attempt >= attempts:
                    raise
                delay = backoff_seconds[min(attempt - 1, len(backoff_seconds) - 1)]
                logger.warning("%s retrying in %.1fs (attempt %s/%s)", label, delay, attempt, attempts)
                await asyncio.sleep(delay)
        raise StoreError("Supabase unreachable.")

    async def get_user_id(self, access_token: str) -> Optional[str]:
        def _request() -> Optional[str]:
            response = self.client.auth.get_user(access_token)
            user = response.user if response else None
            return user.id if user else None

        try:
            return await asyncio.to_thread(_request)
        except AuthError as exc:
            logger.info("Access token rejected: %s", exc)
            return None

    async def fetch_owned_menu(self, menu_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        def _request() -> List[Dict[str, Any]]:
            response = (
                self.client.table("menus")
                .select(MENU_COLUMNS)
                .eq("id", menu_id)
                .eq("user_id", user_id)
                .limit(1)
                .execute()
            )
            return response.data or []

        rows = await self._read(_request, label="menu lookup")
        return rows[0] if rows else None

    async def language_exists(self, menu_id: str, language_code: str) -> bool:
        def _request() -> List[Dict[str, Any]]:
            response = (
                self.client.table("menu_languages")
                .select("id")
                .eq("menu_id", menu_id)
                .eq("language_code", language_code)
                .limit(1)
                .execute()
            )
            return response.data or []

        return bool(await self._read(_request, label="menu language lookup"))

    async def insert_menu_language(self, row: Dict[str, Any]) -> None:
        await self._run(
            lambda: self.client.table("menu_languages").insert([row]).execute(),
            label="menu language insert",
        )

    async def delete_menu_language(self, menu_id: str, language_code: str) -> None:
        await self._run(
            lambda: self.client.table("menu_languages")
            .delete()
            .eq("menu_id", menu_id)
            .eq("language_code", language_code)
            .execute(),
            label="menu language delete",
        )

    async def fetch_categories(self, menu_id: str) -> List[Dict[str, Any]]:
        def _request() -> List[Dict[str, Any]]:
            response = (
                self.client.table("categories")
                .select("id,nom,description")
                .eq("menu_id", menu_id)
                .execute()
            )
            return response.data or []

        return await self._read(_request, label="categories lookup")

    async def fetch_menu_items(self, category_ids: Sequence[str]) -> List[Dict[str, Any]]:
        if not category_ids:
            return []

        def _request() -> List[Dict[str, Any]]:
            response = (
                self.client.table("menu_items")
                .select("id,nom,description,category_id")
                .in_("category_id", list(category_ids))
                .execute()
            )
            return response.data or []

        return await self._read(_request, label="menu items lookup")

    async def insert_category_translations(self, rows: List[Dict[str, Any]]) -> None:
        await self._run(
            lambda: self.client.table("category_translations").insert(rows).execute(),
            label="category translations insert",
        )

    async def insert_item_translations(self, rows: List[Dict[str, Any]]) -> None:
        await self._run(
            lambda: self.client.table("menu_item_translations").insert(rows).execute(),
            label="item translations insert",
        )

    async def delete_translations(
        self,
        language_code: str,
        *,
        category_ids: Sequence[str] = (),
        item_ids: Sequence[str] = (),
    ) -> None:
        if category_ids:
            await self._run(
                lambda: self.client.table("category_translations")
                .delete()
                .eq("language_code", language_code)
                .in_("category_id", list(category_ids))
                .execute(),
                label="category translations delete",
            )
        if item_ids:
            await self._run(
                lambda: self.client.table("menu_item_translations")
                .delete()
                .eq("language_code", language_code)
                .in_("menu_item_id", list(item_ids))
                .execute(),
                label="item translations delete",
            )

    async def fetch_interface_keys(self, language_code: str) -> List[str]:
        def _request() -> List[Dict[str, Any]]:
            response = (
                self.client.table("interface_translations")
                .select("translation_key")
                .eq("language_code", language_code)
                .execute()
            )
            return response.data or []

        rows = await self._read(_request, label="interface translations lookup")
        return [row["translation_key"] for row in rows if row.get("translation_key")]

    async def insert_interface_translations(self, rows: List[Dict[str, Any]]) -> None:
        await self._run(
            lambda: self.client.table("interface_translations").insert(rows).execute(),
            label="interface translations insert",
        )


def get_menu_store() -> MenuStore:
    """FastAPI dependency returning the Supabase-backed store."""
    return SupabaseMenuStore()


__all__ = ["MenuStore", "StoreError", "SupabaseMenuStore", "get_menu_store"]
