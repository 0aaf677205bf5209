import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse

from app.schemas import TranslateInterfaceRequest
from app.services.interface_translation_service import InterfaceTranslationError, translate_interface
from app.services.llm_client import MenuModelClient, get_model_client
from app.services.menu_store import MenuStore, StoreError, get_menu_store
from app.services.menu_translation_service import (
    MenuTranslationError,
    authenticate_caller,
    parse_translate_request,
    translate_owned_menu,
)
from app.services.postgrest_client import BearerTokenError

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/translate-menu")
async def translate_menu_endpoint(
    request: Request,
    authorization: Optional[str] = Header(default=None, alias="Authorization"),
    store: MenuStore = Depends(get_menu_store),
    model: MenuModelClient = Depends(get_model_client),
) -> JSONResponse:
    try:
        user_id = await authenticate_caller(store, authorization)
        payload = parse_translate_request(await request.body())
        result = await translate_owned_menu(
            store,
            model,
            user_id=user_id,
            menu_id=payload.menu_id,
            target_language=payload.target_language,
            language_name=payload.language_name,
        )
    except (BearerTokenError, MenuTranslationError, StoreError) as exc:
        logger.error("Translation error: %s", exc)
        return JSONResponse(status_code=500, content={"error": str(exc)})
    except Exception:
        logger.exception("Unexpected menu translation failure")
        return JSONResponse(status_code=500, content={"error": "Translation failed"})

    return JSONResponse(content=result.to_payload())


@router.post("/translate-interface")
async def translate_interface_endpoint(
    request: Request,
    store: MenuStore = Depends(get_menu_store),
    model: MenuModelClient = Depends(get_model_client),
) -> JSONResponse:
    try:
        payload = TranslateInterfaceRequest.model_validate_json(await request.body())
        body = await translate_interface(
            store,
            model,
            language_code=payload.language_code,
            language_name=payload.language_name,
        )
    except InterfaceTranslationError as exc:
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())
    except Exception as exc:
        logger.exception("Unexpected interface translation failure")
        return JSONResponse(status_code=500, content={"error": "Internal server error", "details": str(exc)})

    return JSONResponse(content=body)


__all__ = ["router"]
