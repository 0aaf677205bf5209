import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from app.schemas import ParseMenuImageRequest
from app.services.image_search_service import DishImageService
from app.services.llm_client import MenuModelClient, get_model_client
from app.services.menu_ingest_service import MenuExtractionError, extract_menu_from_image

router = APIRouter()
logger = logging.getLogger(__name__)


def get_dish_image_service() -> DishImageService:
    return DishImageService()


@router.post("/parse-menu-image")
async def parse_menu_image(
    request: Request,
    model: MenuModelClient = Depends(get_model_client),
    image_service: DishImageService = Depends(get_dish_image_service),
) -> JSONResponse:
    try:
        payload = ParseMenuImageRequest.model_validate_json(await request.body())
        document = await extract_menu_from_image(
            payload.image_url,
            payload.menu_id,
            model=model,
            import_images=payload.import_images,
            image_service=image_service,
        )
    except MenuExtractionError as exc:
        logger.info("Menu image parsing failed (%s): %s", exc.status_code, exc)
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())
    except Exception:
        logger.exception("Unexpected menu image parsing failure")
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    return JSONResponse(content={"success": True, "data": document})


__all__ = ["router", "get_dish_image_service"]
