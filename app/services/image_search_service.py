"""Find a photo for each extracted dish and copy it into Supabase storage."""

from __future__ import annotations

import asyncio
import logging
import os
import re
import secrets
import time
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
from dotenv import load_dotenv
from supabase import Client

from app.config.supabase_client import SUPABASE_STORAGE_BUCKET, get_supabase_client

load_dotenv()

logger = logging.getLogger(__name__)

UNSPLASH_API_URL = "https://api.unsplash.com"
UNSPLASH_ACCESS_KEY = os.getenv("UNSPLASH_ACCESS_KEY")
SEARCH_RETRIES = 3
SEARCH_TIMEOUT_SECONDS = 15.0
MAX_DISH_IMAGE_BYTES = 5 * 1024 * 1024
PAUSE_BETWEEN_ITEMS_SECONDS = 0.5

FOOD_KEYWORDS = (
    "food",
    "dish",
    "plate",
    "meal",
    "cuisine",
    "cooking",
    "recipe",
    "eat",
    "delicious",
    "tasty",
)
EXCLUDED_KEYWORDS = (
    "restaurant",
    "storefront",
    "building",
    "exterior",
    "sign",
    "logo",
    "interior",
    "dining room",
    "table",
    "chair",
    "people",
    "person",
    "chef",
    "kitchen staff",
    "waiter",
)


def build_search_query(dish_name: str) -> str:
    cleaned = re.sub(r"[^\w\s]", " ", dish_name.lower())
    cleaned = re.sub(r"\s+", " ", cleaned).strip()
    return f"{cleaned} food dish plate meal cuisine cooking"


def pick_food_photo(results: list) -> Optional[Dict[str, Any]]:
    """Prefer a result described as food and not as a venue or people."""

    if not results:
        return None
    for photo in results:
        tags = " ".join(
            str(tag.get("title", "")) for tag in photo.get("tags") or [] if isinstance(tag, dict)
        )
        text = " ".join(
            [str(photo.get("description") or ""), str(photo.get("alt_description") or ""), tags]
        ).lower()
        if any(word in text for word in FOOD_KEYWORDS) and not any(word in text for word in EXCLUDED_KEYWORDS):
            return photo
    return results[0]


class DishImageService:
    """Look up dish photos on Unsplash and re-host them in the storage bucket."""

    def __init__(
        self,
        *,
        access_key: Optional[str] = UNSPLASH_ACCESS_KEY,
        storage_client: Optional[Client] = None,
        bucket: str = SUPABASE_STORAGE_BUCKET,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.access_key = access_key
        self._storage_client = storage_client
        self.bucket = bucket
        self.transport = transport
        self.sleep = sleep

    @property
    def storage_client(self) -> Optional[Client]:
        if self._storage_client is None:
            self._storage_client = get_supabase_client()
        return self._storage_client

    async def search_food_image(self, dish_name: str) -> Optional[str]:
        """Return the URL of the best matching photo, or None."""

        if not self.access_key:
            logger.warning("UNSPLASH_ACCESS_KEY not configured, skipping image search")
            return None

        params = {
            "query": build_search_query(dish_name),
            "per_page": 10,
            "orientation": "landscape",
            "content_filter": "high",
        }
        headers = {"Authorization": f"Client-ID {self.access_key}", "Accept-Version": "v1"}

        async with httpx.AsyncClient(
            base_url=UNSPLASH_API_URL,
            headers=headers,
            timeout=SEARCH_TIMEOUT_SECONDS,
            transport=self.transport,
        ) as client:
            for attempt in range(SEARCH_RETRIES):
                logger.debug("Searching image for %r (attempt %s)", dish_name, attempt + 1)
                try:
                    response = await client.get("/search/photos", params=params)
                    if response.status_code == 429:
                        wait = 2**attempt
                        logger.info("Unsplash rate limited, waiting %ss", wait)
                        await self.sleep(wait)
                        continue
                    response.raise_for_status()
                    photo = pick_food_photo(response.json().get("results") or [])
                except (httpx.HTTPError, ValueError) as exc:
                    logger.warning("Image search for %r failed (attempt %s): %s", dish_name, attempt + 1, exc)
                    if attempt == SEARCH_RETRIES - 1:
                        return None
                    await self.sleep(attempt + 1)
                    continue

                if photo is None:
                    logger.info("No image found for %r", dish_name)
                    return None
                return (photo.get("urls") or {}).get("regular")
        return None

    async def store_dish_image(self, image_url: str, dish_name: str) -> Optional[str]:
        """Copy the photo into the storage bucket and return its public URL."""

        client = self.storage_client
        if client is None:
            logger.warning("Supabase storage not configured, skipping image upload")
            return None

        try:
            async with httpx.AsyncClient(
                timeout=SEARCH_TIMEOUT_SECONDS,
                follow_redirects=True,
                transport=self.transport,
            ) as http:
                response = await http.get(image_url)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Dish image download failed for %r: %s", dish_name, exc)
            return None

        data = response.content
        if len(data) > MAX_DISH_IMAGE_BYTES:
            logger.warning("Dish image too large (%s bytes), skipping", len(data))
            return None

        extension = "jpg" if ".jpg" in image_url else "jpeg"
        slug = re.sub(r"[^a-z0-9]", "-", dish_name.lower())
        path = f"menu-items/{int(time.time() * 1000)}-{secrets.token_hex(5)}-{slug}.{extension}"

        def _upload() -> str:
            bucket = client.storage.from_(self.bucket)
            bucket.upload(path, data, {"content-type": "image/jpeg"})
            return bucket.get_public_url(path)

        try:
            public_url = await asyncio.to_thread(_upload)
        except Exception as exc:
            logger.warning("Dish image upload failed for %r: %s", dish_name, exc)
            return None
        logger.info("Stored image for %r at %s", dish_name, public_url)
        return public_url

    async def attach_dish_images(self, document: Dict[str, Any]) -> None:
        """Set ``image_url`` on every item; empty when no photo could be stored."""

        for category in document.get("categories", []):
            items = category.get("items", [])
            logger.info("Looking up images for %s items in %r", len(items), category.get("name"))
            for item in items:
                name = str(item.get("name") or "").strip()
                stored = None
                if name:
                    try:
                        found = await self.search_food_image(name)
                        if found:
                            stored = await self.store_dish_image(found, name)
                    except Exception:
                        logger.warning("Image lookup failed for %r", name, exc_info=True)
                item["image_url"] = stored or ""
                await self.sleep(PAUSE_BETWEEN_ITEMS_SECONDS)


__all__ = ["DishImageService", "build_search_query", "pick_food_photo"]
