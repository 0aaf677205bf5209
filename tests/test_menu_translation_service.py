import asyncio
import json

import pytest

from app.services.menu_translation_service import (
    MenuTranslationError,
    build_translation_units,
    clean_title,
    parse_translate_request,
    parse_translation_reply,
    partition_translations,
    translate_menu,
)
from app.services.postgrest_client import BearerTokenError

from fakes import FakeMenuStore, FakeModel, status_error

TRANSLATED = [
    {"type": "category", "id": "c1", "name": "Starters", "description": "To begin"},
    {"type": "category", "id": "c2", "name": "Desserts", "description": ""},
    {"type": "item", "id": "i1", "name": "French onion soup", "description": "Au gratin"},
    {"type": "item", "id": "i2", "name": "Tarte Tatin", "description": ""},
]


def run_translation(store, model, *, authorization="Bearer owner-token", menu_id="m1", language="en"):
    return asyncio.run(
        translate_menu(
            store,
            model,
            authorization=authorization,
            menu_id=menu_id,
            target_language=language,
            language_name="English",
        )
    )


def test_translate_menu_persists_every_translation() -> None:
    store = FakeMenuStore()
    model = FakeModel('"The Menu"', "```json\n" + json.dumps(TRANSLATED) + "\n```")

    result = run_translation(store, model)

    assert result.to_payload() == {
        "success": True,
        "message": "Translated to English",
        "menuTitle": "The Menu",
        "categoriesCount": 2,
        "itemsCount": 2,
    }
    assert store.menu_languages == [
        {"menu_id": "m1", "language_code": "en", "is_default": False, "menu_title": "The Menu"}
    ]
    assert {row["category_id"]: row["nom"] for row in store.category_translations} == {
        "c1": "Starters",
        "c2": "Desserts",
    }
    assert store.item_translations[0] == {
        "menu_item_id": "i1",
        "language_code": "en",
        "nom": "French onion soup",
        "description": "Au gratin",
    }
    title_call, batch_call = model.calls
    assert "La Carte" in title_call["prompt"]
    assert title_call["max_tokens"] == 100
    assert '"type": "category"' in batch_call["prompt"]
    assert batch_call["max_tokens"] == 4096


def test_existing_language_is_a_no_op_without_model_call() -> None:
    store = FakeMenuStore()
    store.menu_languages.append({"menu_id": "m1", "language_code": "en", "is_default": False})
    model = FakeModel()

    result = run_translation(store, model)

    assert result.to_payload() == {"success": True, "message": "Language already exists"}
    assert model.calls == []


def test_non_owner_and_unknown_menu_get_the_same_error() -> None:
    store = FakeMenuStore()

    with pytest.raises(MenuTranslationError) as not_owned:
        run_translation(store, FakeModel(), authorization="Bearer other-token")
    with pytest.raises(MenuTranslationError) as missing:
        run_translation(store, FakeModel(), menu_id="does-not-exist")

    assert str(not_owned.value) == str(missing.value) == "Menu not found or access denied"


def test_missing_or_invalid_credentials_are_rejected() -> None:
    store = FakeMenuStore()

    with pytest.raises(BearerTokenError, match="No authorization header"):
        run_translation(store, FakeModel(), authorization=None)
    with pytest.raises(MenuTranslationError, match="Unauthorized"):
        run_translation(store, FakeModel(), authorization="Bearer forged")


def test_unparsable_batch_reply_rolls_back_language_row() -> None:
    store = FakeMenuStore()
    model = FakeModel("The Menu", "Here are your translations!")

    with pytest.raises(MenuTranslationError, match="Failed to parse translation response"):
        run_translation(store, model)

    assert store.menu_languages == []
    assert store.category_translations == []


def test_item_insert_failure_removes_category_rows_and_language() -> None:
    store = FakeMenuStore()
    store.fail_on.add("insert_item_translations")
    model = FakeModel("The Menu", json.dumps(TRANSLATED))

    with pytest.raises(Exception, match="insert_item_translations failed"):
        run_translation(store, model)

    assert store.menu_languages == []
    assert store.category_translations == []


def test_batch_api_failure_is_reported() -> None:
    store = FakeMenuStore()
    model = FakeModel("The Menu", status_error(500))

    with pytest.raises(MenuTranslationError, match="Translation API failed"):
        run_translation(store, model)

    assert store.menu_languages == []


def test_title_api_failure_writes_nothing() -> None:
    store = FakeMenuStore()

    with pytest.raises(MenuTranslationError, match="Menu title translation failed"):
        run_translation(store, FakeModel(status_error(401)))

    assert store.menu_languages == []


def test_menu_without_content_skips_batch_call() -> None:
    store = FakeMenuStore()
    store.categories = []
    model = FakeModel("The Menu")

    result = run_translation(store, model)

    assert result.categories_count == 0
    assert result.items_count == 0
    assert len(model.calls) == 1


def test_fenced_and_plain_replies_parse_identically() -> None:
    plain = json.dumps(TRANSLATED)

    assert parse_translation_reply("```json\n" + plain + "\n```") == parse_translation_reply(plain)
    assert parse_translation_reply("Sure!\n```\n" + plain + "\n```\nEnjoy") == TRANSLATED


def test_parse_translation_reply_requires_an_array() -> None:
    with pytest.raises(MenuTranslationError):
        parse_translation_reply('{"type": "item"}')


def test_clean_title_strips_wrapping_quotes_only() -> None:
    assert clean_title('  "Chef\'s Menu"\n') == "Chef's Menu"
    assert clean_title("«Carta»") == "Carta"


def test_units_default_missing_descriptions() -> None:
    units = build_translation_units(
        [{"id": "c1", "nom": "Plats", "description": None}],
        [{"id": "i1", "nom": "Steak frites", "description": None, "category_id": "c1"}],
    )

    assert units == [
        {"type": "category", "id": "c1", "name": "Plats", "description": ""},
        {"type": "item", "id": "i1", "name": "Steak frites", "description": ""},
    ]


def test_partition_ignores_unknown_types() -> None:
    categories, items = partition_translations(
        TRANSLATED + [{"type": "drink", "id": "d1", "name": "Wine"}],
        "en",
    )

    assert len(categories) == 2
    assert len(items) == 2


def test_parse_translate_request_reads_aliases() -> None:
    payload = parse_translate_request(b'{"menuId": "m1", "targetLanguage": "en", "languageName": "English"}')

    assert (payload.menu_id, payload.target_language, payload.language_name) == ("m1", "en", "English")


def test_parse_translate_request_rejects_broken_json() -> None:
    with pytest.raises(MenuTranslationError, match="Invalid request body"):
        parse_translate_request(b"{not json")
