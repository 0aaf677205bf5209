"""FastAPI application exposing the menu extraction and translation functions."""

import sys
from pathlib import Path
from typing import Dict

sys.path.append(str(Path(__file__).resolve().parents[1]))

from fastapi import FastAPI

from app.api.routes.menu_import import router as menu_import_router
from app.api.routes.translations import router as translations_router
from app.config.logging import setup_logging
from app.security.cors import cors_middleware

setup_logging()

app = FastAPI(title="Menu Functions")

app.middleware("http")(cors_middleware)

# Include Routers
app.include_router(menu_import_router, prefix="/functions/v1", tags=["Menu Import"])
app.include_router(translations_router, prefix="/functions/v1", tags=["Translations"])


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host="127.0.0.1", port=8000, reload=True)
