"""Permissive CORS handling shared by every endpoint."""

from __future__ import annotations

from typing import Awaitable, Callable, Dict

from fastapi import Request, Response

CORS_HEADERS: Dict[str, str] = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization, X-Client-Info, Apikey",
}


async def cors_middleware(
    request: Request,
    call_next: Callable[[Request], Awaitable[Response]],
) -> Response:
    """Answer preflight requests directly and stamp CORS headers on every response."""

    if request.method == "OPTIONS":
        return Response(status_code=200, headers=CORS_HEADERS)
    response = await call_next(request)
    response.headers.update(CORS_HEADERS)
    return response


__all__ = ["CORS_HEADERS", "cors_middleware"]
