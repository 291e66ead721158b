import datetime
import json
from unittest.mock import MagicMock

import redis

from dynapi import RequestContext, ResponseCache


def _context(**args) -> RequestContext:
    return RequestContext.from_args(args, path="http://localhost/api/books")


def _mocked_cache(**kwargs) -> "tuple[ResponseCache, MagicMock]":
    client = MagicMock()
    client.get.return_value = None
    client.scan_iter.return_value = iter([])
    return ResponseCache(client=client, **kwargs), client


def test_key_structure() -> None:
    key = ResponseCache.make_key("index", "book", _context(page="2"), "anonymous")
    op_type, entity_name, digest = key.split("::")
    assert (op_type, entity_name) == ("index", "book")
    assert len(digest) == 40


def test_key_depends_on_the_query_and_the_scope() -> None:
    key = ResponseCache.make_key("index", "book", _context(page="2", output="complete"))
    assert key == ResponseCache.make_key("index", "book", _context(output="complete", page="2"))
    assert key != ResponseCache.make_key("index", "book", _context(page="3", output="complete"))
    assert key != ResponseCache.make_key("index", "book", _context(page="2", output="complete"), "editor")


def test_post_body_is_part_of_the_key() -> None:
    first = RequestContext.from_args({}, method="POST", path="/api/books/exec/search", body={"q": "a"})
    second = RequestContext.from_args({}, method="POST", path="/api/books/exec/search", body={"q": "b"})
    assert ResponseCache.make_key("function", "book", first) != ResponseCache.make_key("function", "book", second)


def test_get_set_and_invalidate(response_cache: ResponseCache) -> None:
    book_key = ResponseCache.make_key("index", "book", _context())
    author_key = ResponseCache.make_key("index", "author", _context())
    response_cache.set(book_key, [{"id": 1}])
    response_cache.set(author_key, [{"id": 2}])
    assert response_cache.get(book_key) == [{"id": 1}]
    assert len(response_cache) == 2

    assert response_cache.delete_entity("book") == 1
    assert response_cache.get(book_key) is None
    assert response_cache.get(author_key) == [{"id": 2}]

    response_cache.clear()
    assert len(response_cache) == 0


def test_entity_names_dont_overlap(response_cache: ResponseCache) -> None:
    response_cache.set("index::book::a", [])
    response_cache.set("index::book_tag::b", [])
    assert response_cache.delete_entity("book") == 1
    assert len(response_cache) == 1


def test_values_are_stored_as_json_with_a_ttl() -> None:
    cache, client = _mocked_cache(timeout=300)
    cache.set("show::book::x", {"id": 1, "deleted_at": datetime.datetime(2024, 5, 1, 12, 30)})
    client.setex.assert_called_once_with("dynapi_cache:show::book::x", 300, '{"id": 1, "deleted_at": "2024-05-01 12:30:00"}')

    client.get.return_value = json.dumps({"id": 1})
    assert cache.get("show::book::x") == {"id": 1}
    client.get.assert_called_with("dynapi_cache:show::book::x")


def test_responses_always_expire() -> None:
    cache, client = _mocked_cache()
    cache.set("index::book::x", [])
    assert client.setex.call_args[0][1] == 86400


def test_invalidation_scans_the_entity_keys() -> None:
    cache, client = _mocked_cache()
    client.scan_iter.return_value = iter(["dynapi_cache:index::book::a", "dynapi_cache:show::book::b"])
    assert cache.delete_entity("book") == 2
    client.scan_iter.assert_called_once_with(match="dynapi_cache:*::book::*")
    client.delete.assert_called_once_with("dynapi_cache:index::book::a", "dynapi_cache:show::book::b")


def test_redis_failures_are_cache_misses() -> None:
    cache, client = _mocked_cache()
    client.get.side_effect = redis.ConnectionError("refused")
    client.setex.side_effect = redis.ConnectionError("refused")
    cache.set("index::book::x", [])
    assert cache.get("index::book::x") is None


def test_client_is_created_from_the_url(monkeypatch) -> None:
    from_url = MagicMock()
    monkeypatch.setattr(redis.Redis, "from_url", from_url)
    cache = ResponseCache("redis://cache:6379/2")
    from_url.assert_not_called()
    assert cache.redis is from_url.return_value
    from_url.assert_called_once_with("redis://cache:6379/2", decode_responses=True)
