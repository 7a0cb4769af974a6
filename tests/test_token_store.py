"""Tests for the access token store and its cookie mirror."""

import json

import httpx

from omnidesk.services.token_store import (
    ACCESS_TOKEN_KEY,
    CookieMirror,
    FileTokenStorage,
    MemoryTokenStorage,
    TokenStore,
)


def test_set_token_writes_storage_and_cookie():
    storage = MemoryTokenStorage()
    cookie = CookieMirror(app_url="https://app.example.com", secure=True)
    store = TokenStore(storage, cookie)

    store.set_token("abc")

    assert store.get_token() == "abc"
    assert storage.load() == "abc"
    assert cookie.value == "abc"
    assert cookie.header == "accessToken=abc; Path=/; Max-Age=900; SameSite=Lax; Secure"


def test_clear_expires_cookie():
    cookie = CookieMirror(app_url="http://localhost:3000", secure=False)
    store = TokenStore(MemoryTokenStorage("abc"), cookie)
    assert cookie.value == "abc"

    store.clear()

    assert store.get_token() is None
    assert cookie.value is None
    assert cookie.header == "accessToken=; Path=/; Max-Age=0; SameSite=Lax"


def test_cookie_value_is_url_encoded():
    cookie = CookieMirror(app_url="http://localhost:3000", secure=False)
    header = cookie.write("a b;c")
    assert header.startswith("accessToken=a%20b%3Bc;")


def test_cookie_mirror_writes_into_shared_jar():
    jar = httpx.Cookies()
    cookie = CookieMirror(app_url="http://localhost:3000", secure=False, jar=jar)
    cookie.write("tok")
    assert jar.get("accessToken") == "tok"


def test_store_loads_existing_token_on_start():
    store = TokenStore(MemoryTokenStorage("persisted"), CookieMirror(app_url="http://localhost:3000"))
    assert store.get_token() == "persisted"
    assert store.cookie.value == "persisted"


def test_subscribers_notified_on_every_write():
    store = TokenStore(MemoryTokenStorage(), CookieMirror(app_url="http://localhost:3000"))
    seen = []
    unsubscribe = store.subscribe(seen.append)

    store.set_token("one")
    store.set_token("")
    unsubscribe()
    store.set_token("two")

    assert seen == ["one", None]


def test_failing_subscriber_does_not_block_write():
    store = TokenStore(MemoryTokenStorage(), CookieMirror(app_url="http://localhost:3000"))

    def boom(_token):
        raise RuntimeError("listener failed")

    store.subscribe(boom)
    store.set_token("abc")
    assert store.get_token() == "abc"


def test_file_storage_survives_new_instance(tmp_path):
    path = tmp_path / "session.json"
    FileTokenStorage(path).save("durable")

    assert json.loads(path.read_text())[ACCESS_TOKEN_KEY] == "durable"
    assert FileTokenStorage(path).load() == "durable"

    FileTokenStorage(path).save(None)
    assert FileTokenStorage(path).load() is None


def test_file_storage_ignores_corrupt_file(tmp_path):
    path = tmp_path / "session.json"
    path.write_text("{not json")
    assert FileTokenStorage(path).load() is None


def test_clearing_twice_is_a_noop():
    cookie = CookieMirror(app_url="http://localhost:3000", secure=False)
    store = TokenStore(MemoryTokenStorage(), cookie)
    seen = []
    store.subscribe(seen.append)

    store.set_token("t1")
    store.clear()
    store.clear()

    assert store.get_token() is None
    assert cookie.value is None
    assert seen == ["t1", None]


def test_cookie_clear_without_cookie_still_expires_header():
    cookie = CookieMirror(app_url="http://localhost:3000", secure=False)

    assert cookie.write(None) == "accessToken=; Path=/; Max-Age=0; SameSite=Lax"
    assert cookie.value is None


def test_same_token_does_not_notify():
    store = TokenStore(MemoryTokenStorage(), CookieMirror(app_url="http://localhost:3000"))
    seen = []
    store.subscribe(seen.append)

    store.set_token("abc")
    store.set_token("abc")

    assert seen == ["abc"]
