import os

import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("OPENAI_API_KEY", "test-key")

from app.api.routes.menu_import import get_dish_image_service
from app.main import app
from app.services.llm_client import get_model_client
from app.services.menu_store import get_menu_store

from fakes import FakeMenuStore


class NoImages:
    async def attach_dish_images(self, document):
        for category in document.get("categories", []):
            for item in category.get("items", []):
                item["image_url"] = ""


@pytest.fixture
def store() -> FakeMenuStore:
    return FakeMenuStore()


@pytest.fixture
def make_client(store):
    """Build a TestClient whose model gateway answers with the given outcomes."""

    def _factory(model):
        app.dependency_overrides[get_model_client] = lambda: model
        app.dependency_overrides[get_menu_store] = lambda: store
        app.dependency_overrides[get_dish_image_service] = lambda: NoImages()
        return TestClient(app)

    yield _factory
    app.dependency_overrides.clear()
