"""Turn a menu photo into a structured category/item document."""

from __future__ import annotations

import asyncio
import base64
import json
import logging
import os
import re
from dataclasses import dataclass
from http import HTTPStatus
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol

import httpx
from openai import APIError, APIStatusError, APITimeoutError, RateLimitError
from pydantic import ValidationError

from app.config.openai_client import has_api_key
from app.schemas import ExtractedMenu
from app.services.image_search_service import DishImageService
from app.services.llm_client import ImageAttachment, MenuModelClient

logger = logging.getLogger(__name__)

MAX_IMAGE_BYTES = 10 * 1024 * 1024
ENCODE_CHUNK_BYTES = 8190  # multiple of 3: per-chunk base64 concatenates without padding
IMAGE_FETCH_TIMEOUT_SECONDS = 30.0
DEFAULT_MEDIA_TYPE = "image/jpeg"

MAX_ATTEMPTS = 3
REQUEST_TIMEOUT_SECONDS = 60.0
INITIAL_BACKOFF_SECONDS = 2.0
EXTRACTION_MAX_TOKENS = 4096
CREDENTIAL_CHECK_MAX_TOKENS = 10

PREFLIGHT_ENABLED = os.getenv("MENU_EXTRACTION_PREFLIGHT", "false").lower() in ("1", "true", "yes")

JSON_OBJECT_PATTERN = re.compile(r"\{[\s\S]*\}")

MENU_EXTRACTION_PROMPT = """You are reading a photo of a restaurant menu. Extract EVERY item that is visible on it.

RULES:
1. Count every item before answering. If the menu lists 23 pizzas, the answer contains 23 pizzas.
2. Do not invent subcategories. A pizza menu yields a single category named "Pizzas".
3. Do not group items by price, specialty or any other criterion.
4. Keep the items in the exact order in which they appear on the menu.

Answer with this JSON structure:
{
  "categories": [
    {
      "name": "Pizzas",
      "description": "",
      "items": [
        {
          "name": "Item name",
          "description": "Full description as printed",
          "price": 15.90,
          "allergenes": ["gluten", "dairy"],
          "vegetarian": false,
          "vegan": false,
          "gluten_free": false,
          "spicy": false
        }
      ]
    }
  ]
}

PROCESS:
1. Read the menu from top to bottom, left to right.
2. For each item take the name, the full description and the exact price.
3. Write prices as decimal numbers: "15,90 €" becomes 15.90.
4. Infer allergens from the ingredients (gluten from wheat or flour, dairy from cheese or cream, and so on).
5. Section headings printed on the menu are not categories: put everything in one category named after the main type of food.
6. Check again that no item is missing."""

SUGGESTION_INVALID_KEY = "Invalid API key - verify OPENAI_API_KEY in the server environment"
SUGGESTION_RATE_LIMITED = "Rate limit exceeded - please wait before trying again"
SUGGESTION_GENERIC = "API key test failed - check your OpenAI API key and quota"


class MenuExtractionError(RuntimeError):
    """Raised when menu extraction fails. Carries the HTTP status and response body."""

    status_code = 500

    def __init__(self, message: str, *, status_code: Optional[int] = None, **details: Any) -> None:
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code
        self.details = details

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": str(self)}
        payload.update({key: value for key, value in self.details.items() if value is not None})
        return payload


class MissingInputError(MenuExtractionError):
    status_code = 400


class ImageFetchError(MenuExtractionError):
    status_code = 400


class ImageTooLargeError(MenuExtractionError):
    status_code = 400


class CredentialCheckError(MenuExtractionError):
    """The upstream model rejected the configured credentials."""


class ExtractionTimeoutError(MenuExtractionError):
    status_code = 408


class QuotaExceededError(MenuExtractionError):
    status_code = 429


class ModelRequestError(MenuExtractionError):
    """The model call failed with a non-retryable status."""


class EmptyModelReplyError(MenuExtractionError):
    """The model answered without any text."""


class MenuParseError(MenuExtractionError):
    """The model reply did not contain a usable menu document."""


class DishImageEnricher(Protocol):
    async def attach_dish_images(self, document: Dict[str, Any]) -> None: ...


@dataclass(frozen=True)
class FetchedImage:
    data: bytes
    media_type: str


ModelRequest = Callable[..., Awaitable[str]]


async def extract_menu_from_image(
    image_url: Optional[str],
    menu_id: Optional[str],
    *,
    model: MenuModelClient,
    import_images: bool = True,
    image_service: Optional[DishImageEnricher] = None,
    preflight: Optional[bool] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> Dict[str, Any]:
    """Run the whole extraction pipeline and return the parsed menu document."""

    if not image_url or not menu_id:
        raise MissingInputError("Image URL and Menu ID are required")

    if PREFLIGHT_ENABLED if preflight is None else preflight:
        await check_credentials(model)

    logger.info("Fetching menu image for menu %s", menu_id)
    image = await fetch_image(image_url, transport=transport)
    logger.info("Menu image fetched: %s bytes (%s)", len(image.data), image.media_type)
    attachment = ImageAttachment(data=encode_image_base64(image.data), media_type=image.media_type)

    async def _request(*, timeout: Optional[float]) -> str:
        return await model.complete(
            MENU_EXTRACTION_PROMPT,
            image=attachment,
            max_tokens=EXTRACTION_MAX_TOKENS,
            timeout=timeout,
        )

    try:
        reply = await call_with_retry(_request, sleep=sleep)
    except APIStatusError as exc:
        raise classify_upstream_error(exc) from exc

    if not reply.strip():
        raise EmptyModelReplyError("No content received from AI")

    document = parse_menu_reply(reply)
    logger.info("Menu %s extracted: %s categories", menu_id, len(document["categories"]))

    if import_images:
        if image_service is None:
            image_service = DishImageService()
        await image_service.attach_dish_images(document)
    else:
        clear_dish_images(document)
    return document


async def check_credentials(model: MenuModelClient) -> None:
    """Issue a minimal request so credential problems surface before heavy work."""

    logger.info("Testing model API key")
    try:
        await model.complete("Hello", max_tokens=CREDENTIAL_CHECK_MAX_TOKENS)
    except APIStatusError as exc:
        status = exc.status_code
        logger.error(
            "Model API key test failed (status=%s, has_api_key=%s): %s",
            status,
            has_api_key(),
            exc.message,
        )
        raise CredentialCheckError(
            "API key test failed",
            status_code=status,
            details=f"{status} {_reason_phrase(status)}".strip(),
            rawError=exc.message,
            hasApiKey=has_api_key(),
            suggestion=credential_suggestion(status),
        ) from exc
    except APIError as exc:
        logger.error("Model API key test error: %s", exc)
        raise CredentialCheckError(
            "Failed to test API key",
            details=str(exc),
            suggestion="Check your OPENAI_API_KEY environment variable",
        ) from exc
    logger.info("Model API key test successful")


def credential_suggestion(status: int) -> str:
    if status == 401:
        return SUGGESTION_INVALID_KEY
    if status == 429:
        return SUGGESTION_RATE_LIMITED
    return SUGGESTION_GENERIC


async def fetch_image(
    image_url: str,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FetchedImage:
    """Download the image, refusing anything above ``MAX_IMAGE_BYTES``."""

    try:
        async with httpx.AsyncClient(
            timeout=IMAGE_FETCH_TIMEOUT_SECONDS,
            follow_redirects=True,
            transport=transport,
        ) as client:
            async with client.stream("GET", image_url) as response:
                if not response.is_success:
                    logger.error("Failed to fetch image: %s %s", response.status_code, response.reason_phrase)
                    raise ImageFetchError("Failed to fetch image", details=f"HTTP {response.status_code}")

                declared = response.headers.get("content-length", "")
                if declared.isdigit() and int(declared) > MAX_IMAGE_BYTES:
                    raise ImageTooLargeError("Image too large. Please use an image smaller than 10MB.")

                buffer = bytearray()
                async for chunk in response.aiter_bytes():
                    buffer.extend(chunk)
                    if len(buffer) > MAX_IMAGE_BYTES:
                        raise ImageTooLargeError("Image too large. Please use an image smaller than 10MB.")
                content_type = response.headers.get("content-type", "")
    except (httpx.HTTPError, httpx.InvalidURL) as exc:
        logger.error("Image download failed: %s", exc)
        raise ImageFetchError("Failed to fetch image", details=str(exc)) from exc

    media_type = content_type.split(";", 1)[0].strip() or DEFAULT_MEDIA_TYPE
    return FetchedImage(data=bytes(buffer), media_type=media_type)


def encode_image_base64(data: bytes, chunk_size: int = ENCODE_CHUNK_BYTES) -> str:
    """Base64-encode ``data`` chunk by chunk."""

    if chunk_size <= 0 or chunk_size % 3:
        raise ValueError("chunk_size must be a positive multiple of 3")
    return "".join(
        base64.b64encode(data[offset : offset + chunk_size]).decode("ascii")
        for offset in range(0, len(data), chunk_size)
    )


async def call_with_retry(
    request: ModelRequest,
    *,
    attempts: int = MAX_ATTEMPTS,
    initial_delay: float = INITIAL_BACKOFF_SECONDS,
    timeout: float = REQUEST_TIMEOUT_SECONDS,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> str:
    """Call ``request`` until it succeeds, retrying only on rate limiting.

    Rate-limited attempts back off exponentially starting at ``initial_delay``.
    Other status errors propagate at once. A timeout moves on to the next
    attempt, except on the last attempt where it raises
    :class:`ExtractionTimeoutError`. When every attempt was used up, one final
    request without the per-attempt timeout decides the outcome.
    """

    delay = initial_delay
    for attempt in range(1, attempts + 1):
        logger.info("Model request attempt %s/%s", attempt, attempts)
        try:
            return await request(timeout=timeout)
        except RateLimitError:
            if attempt < attempts:
                logger.warning(
                    "Rate limit hit, retrying in %.1fs (attempt %s/%s)",
                    delay,
                    attempt,
                    attempts,
                )
                await sleep(delay)
                delay *= 2
        except APITimeoutError as exc:
            logger.error("Model request timed out (attempt %s/%s)", attempt, attempts)
            if attempt == attempts:
                raise ExtractionTimeoutError(
                    "Request timed out. The image might be too complex or the service is overloaded."
                ) from exc

    logger.warning("Retries exhausted after %s attempts, issuing a final request", attempts)
    return await request(timeout=None)


def classify_upstream_error(exc: APIStatusError) -> MenuExtractionError:
    """Map a failed model call onto the extraction error taxonomy."""

    status = exc.status_code
    if status == 429 or _error_code(exc) == "insufficient_quota":
        return QuotaExceededError(
            "API quota exceeded",
            details="Your API key has exceeded its quota. Please check your billing and quota limits.",
            suggestion="Verify that OPENAI_API_KEY holds a valid key with sufficient quota",
            originalError=exc.message,
        )

    logger.error("Model API error (status=%s, has_api_key=%s): %s", status, has_api_key(), exc.message)
    if status == 401:
        return CredentialCheckError(
            "Failed to analyze image with AI",
            details=f"Model API error: {status} {_reason_phrase(status)}".strip(),
            hasApiKey=has_api_key(),
            suggestion=SUGGESTION_INVALID_KEY,
        )
    return ModelRequestError(
        "Failed to analyze image with AI",
        details=f"Model API error: {status} {_reason_phrase(status)}".strip(),
        hasApiKey=has_api_key(),
        suggestion="Verify that OPENAI_API_KEY holds a valid OpenAI API key",
    )


def parse_menu_reply(raw_text: str) -> Dict[str, Any]:
    """Parse the first ``{...}`` span of the reply and check its menu shape."""

    match = JSON_OBJECT_PATTERN.search(raw_text or "")
    if not match:
        logger.warning("No JSON object found in model reply: %s", _preview_text(raw_text))
        raise MenuParseError("Failed to parse AI response", rawResponse=raw_text)
    try:
        payload = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        logger.warning("Menu JSON parsing failed: %s", _preview_text(raw_text))
        raise MenuParseError("Failed to parse AI response", rawResponse=raw_text) from exc

    try:
        ExtractedMenu.model_validate(payload)
    except ValidationError as exc:
        logger.warning("Menu JSON has an unexpected shape: %s", exc.errors()[:3])
        raise MenuParseError(
            "AI response does not match the expected menu structure",
            details=str(exc),
            rawResponse=raw_text,
        ) from exc
    return payload


def clear_dish_images(document: Dict[str, Any]) -> None:
    for category in document.get("categories", []):
        for item in category.get("items", []):
            item["image_url"] = ""


def _error_code(exc: APIStatusError) -> Optional[str]:
    if exc.code:
        return str(exc.code)
    body = exc.body
    if isinstance(body, dict):
        error = body.get("error", body)
        if isinstance(error, dict) and error.get("code"):
            return str(error["code"])
    return None


def _reason_phrase(status: int) -> str:
    try:
        return HTTPStatus(status).phrase
    except ValueError:
        return ""


def _preview_text(text: str, limit: int = 280) -> str:
    safe = (text or "").replace("\n", " ").strip()
    if len(safe) <= limit:
        return safe
    return safe[: limit - 3] + "..."


__all__ = [
    "MAX_IMAGE_BYTES",
    "MENU_EXTRACTION_PROMPT",
    "CredentialCheckError",
    "EmptyModelReplyError",
    "ExtractionTimeoutError",
    "FetchedImage",
    "ImageFetchError",
    "ImageTooLargeError",
    "MenuExtractionError",
    "MenuParseError",
    "MissingInputError",
    "ModelRequestError",
    "QuotaExceededError",
    "call_with_retry",
    "check_credentials",
    "classify_upstream_error",
    "encode_image_base64",
    "extract_menu_from_image",
    "fetch_image",
    "parse_menu_reply",
]
