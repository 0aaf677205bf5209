import asyncio
import types

import pytest
from postgrest import APIError as PostgrestAPIError

from app.services.menu_store import StoreError, SupabaseMenuStore


class FakeQuery:
    def __init__(self, table, log, rows, error=None):
        self.table = table
        self.log = log
        self.rows = rows
        self.error = error

    def __getattr__(self, name):
        def _record(*args, **kwargs):
            self.log.append((self.table, name, args))
            return self

        return _record

    def execute(self):
        if self.error is not None:
            raise self.error
        return types.SimpleNamespace(data=self.rows)


class FakeClient:
    def __init__(self, rows=None, error=None, user_id="user-1"):
        self.log = []
        self.rows = rows or []
        self.error = error
        user = types.SimpleNamespace(id=user_id) if user_id else None
        self.auth = types.SimpleNamespace(get_user=lambda token: types.SimpleNamespace(user=user))

    def table(self, name):
        return FakeQuery(name, self.log, self.rows, self.error)


def test_fetch_owned_menu_filters_on_id_and_owner() -> None:
    client = FakeClient(rows=[{"id": "m1", "user_id": "user-1", "menu_name": "La Carte"}])
    store = SupabaseMenuStore(client)

    menu = asyncio.run(store.fetch_owned_menu("m1", "user-1"))

    assert menu["menu_name"] == "La Carte"
    assert ("menus", "eq", ("id", "m1")) in client.log
    assert ("menus", "eq", ("user_id", "user-1")) in client.log


def test_language_exists_reads_menu_languages() -> None:
    store = SupabaseMenuStore(FakeClient(rows=[]))

    assert asyncio.run(store.language_exists("m1", "en")) is False


def test_fetch_menu_items_without_categories_skips_query() -> None:
    client = FakeClient()
    store = SupabaseMenuStore(client)

    assert asyncio.run(store.fetch_menu_items([])) == []
    assert client.log == []


def test_postgrest_errors_become_store_errors() -> None:
    error = PostgrestAPIError({"message": "duplicate key value", "code": "23505", "hint": None, "details": None})
    store = SupabaseMenuStore(FakeClient(error=error))

    with pytest.raises(StoreError, match="duplicate key value"):
        asyncio.run(store.insert_menu_language({"menu_id": "m1", "language_code": "en"}))


def test_get_user_id_resolves_token() -> None:
    assert asyncio.run(SupabaseMenuStore(FakeClient()).get_user_id("token")) == "user-1"
    assert asyncio.run(SupabaseMenuStore(FakeClient(user_id=None)).get_user_id("token")) is None
