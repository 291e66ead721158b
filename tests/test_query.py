import datetime

import pytest
from sqlalchemy import inspect as sqla_inspect

from dynapi import DB, EntityHooks, EntityRegistry, QueryShaper, RelationGraphWalker, RequestContext

from bookstore import AUTHOR, BOOK, Author, Book


def _execute(registry: EntityRegistry, name: str, mode: str = "simplified", paginated: bool = False, **args):
    entity = registry.get(name)
    context = RequestContext.from_args(args)
    plan = RelationGraphWalker(registry).walk(entity, mode)
    return QueryShaper(entity).execute(context, plan, paginated)


def _ids(result):
    return [item.id for item in result.items]


def test_unfiltered(app, registry: EntityRegistry) -> None:
    result = _execute(registry, "book")
    assert _ids(result) == [1, 2, 3]
    assert result.total == 3


def test_filters(app, registry: EntityRegistry) -> None:
    assert _ids(_execute(registry, "book", filter='{"author_id": 1}')) == [1, 2]
    assert _ids(_execute(registry, "book", filter='{"id": [1, 3]}')) == [1, 3]
    # unknown filters are ignored
    assert _ids(_execute(registry, "book", filter='{"publisher": "x"}')) == [1, 2, 3]


def test_ignore_filters(app) -> None:
    registry = EntityRegistry()
    registry.register(Book, dict(BOOK, ignore_filters=["author_id"]))
    registry.register(Author, AUTHOR)
    assert _ids(_execute(registry, "book", filter='{"author_id": 1}')) == [1, 2, 3]


def test_term(app, registry: EntityRegistry) -> None:
    assert _ids(_execute(registry, "book", term="HOBBIT")) == [1]
    assert _ids(_execute(registry, "book", term="33")) == [3]
    assert _ids(_execute(registry, "book", filter='{"term": "the"}')) == [1, 2]


def test_relation_term_filters(app) -> None:
    registry = EntityRegistry()
    registry.register(Book, dict(BOOK, relation_term_filters={"author": ["name"], "tags": ["name"]}))
    registry.register(Author, AUTHOR)
    assert _ids(_execute(registry, "book", term="austen")) == [3]
    assert _ids(_execute(registry, "book", term="fantasy")) == [1, 2]


def test_soft_delete(app, registry: EntityRegistry) -> None:
    DB.session.get(Book, 3).deleted_at = datetime.datetime(2024, 1, 1)
    DB.session.flush()
    assert _ids(_execute(registry, "book")) == [1, 2]
    assert _ids(_execute(registry, "book", with_trashed="true")) == [1, 2, 3]
    assert _ids(_execute(registry, "book", filter='{"deleted": true}')) == [3]


def test_sort(app, registry: EntityRegistry) -> None:
    assert _ids(_execute(registry, "book", sort_by="title", sort_order="desc")) == [2, 1, 3]
    assert _ids(_execute(registry, "book", sort='["price", "asc"]')) == [3, 1, 2]
    # unknown sort columns are ignored
    assert _ids(_execute(registry, "book", sort_by="publisher")) == [1, 2, 3]


def test_client_sort_of_appended_fields(app, registry: EntityRegistry) -> None:
    result = _execute(registry, "book", sort_by="label", paginated=True, per_page="2")
    assert _ids(result) == [3, 1]
    assert result.total == 3


def test_pagination(app, registry: EntityRegistry) -> None:
    result = _execute(registry, "book", paginated=True, page="2", per_page="2")
    assert _ids(result) == [3]
    assert result.total == 3


def test_hooks(app) -> None:
    hooks = EntityHooks(
        request_filter=lambda query, filters, auth: query.filter(Book.price > 9),
        request_sort=lambda query, sort_by, sort_order, auth: query.order_by(None).order_by(Book.price.desc()),
    )
    registry = EntityRegistry()
    registry.register(Book, BOOK, hooks)
    registry.register(Author, AUTHOR)
    assert _ids(_execute(registry, "book")) == [2, 1]


def test_only_visible_columns_are_loaded(app, registry: EntityRegistry) -> None:
    result = _execute(registry, "book")
    state = sqla_inspect(result.items[0])
    assert "price" in state.unloaded
    assert "title" not in state.unloaded


def test_counts(app, registry: EntityRegistry) -> None:
    result = _execute(registry, "author")
    assert result.counts == {1: {}, 2: {}}
    counts = QueryShaper(registry.get("author")).fetch_counts(result.items, ["books"])
    assert counts == {1: {"books_count": 2}, 2: {"books_count": 1}}
    counts = QueryShaper(registry.get("book")).fetch_counts(DB.session.query(Book).all(), ["tags", "chapters"])
    assert counts[1] == {"tags_count": 2, "chapters_count": 2}
    assert counts[3] == {"tags_count": 1, "chapters_count": 0}


@pytest.mark.parametrize("mode", ["complete", "extensive"])
def test_counts_of_the_plan(app, registry: EntityRegistry, mode: str) -> None:
    result = _execute(registry, "author", mode)
    assert result.counts == {1: {"books_count": 2}, 2: {"books_count": 1}}
