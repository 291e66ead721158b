from http import HTTPStatus

import pytest

import dynapi
from dynapi import DB, AuthUser, EntityHooks, EntityRegistry, Execution, RequestContext, ResponseCache

from bookstore import AUTHOR, BOOK, CHAPTER, TAG, Author, Book, Chapter, Tag, open_policy

ADMIN = AuthUser("root", ["super_admin"])
EDITOR = AuthUser("ed", ["editor"])


def _run(execution: Execution, op_type: str, model: str, args=None, **kwargs):
    context = RequestContext.from_args(args or {}, path=f"http://localhost/api/{model}")
    return execution.run(op_type, model, context=context, **kwargs)


def _execution(*registrations, cache=None) -> Execution:
    """
    :param registrations: (model, descriptor) or (model, descriptor, hooks)
    """
    registry = EntityRegistry()
    for registration in registrations:
        registry.register(*registration)
    return Execution(registry, cache)


# Reads


def test_index(execution: Execution) -> None:
    result = _run(execution, "index", "books")
    assert result.status == HTTPStatus.OK
    assert result.ok
    assert result.payload == [
        {"id": 1, "title": "The Hobbit"},
        {"id": 2, "title": "The Lord of the Rings"},
        {"id": 3, "title": "Pride and Prejudice"},
    ]


def test_index_complete_is_paginated(execution: Execution) -> None:
    result = _run(execution, "index", "books", {"output": "complete", "per_page": "2", "page": "2"})
    payload = result.payload
    assert payload["total"] == 3
    assert payload["last_page"] == 2
    assert payload["from"] == 3
    assert payload["next_page_url"] is None
    assert payload["prev_page_url"] == "http://localhost/api/books?paginated=true&page=1&output=complete&per_page=2"
    assert [item["id"] for item in payload["data"]] == [3]
    assert payload["data"][0]["author"]["name"] == "Austen"


def test_index_paginated_parameter(execution: Execution) -> None:
    result = _run(execution, "index", "books", {"paginated": "true", "per_page": "1"})
    assert result.payload["data"] == [{"id": 1, "title": "The Hobbit"}]
    result = _run(execution, "index", "books", {"output": "complete", "paginated": "false"})
    assert len(result.payload) == 3


def test_index_term_and_sort(execution: Execution) -> None:
    result = _run(execution, "index", "books", {"term": "the", "sort_by": "title", "sort_order": "desc", "show_only": "id"})
    assert result.payload == [{"id": 2}, {"id": 1}]


def test_show_by_id_and_slug(execution: Execution) -> None:
    expected = {"id": 1, "name": "Tolkien", "slug": "tolkien", "books_count": 2}
    assert _run(execution, "show", "authors", model_id="1").payload == expected
    assert _run(execution, "show", "authors", model_id="tolkien").payload == expected
    assert _run(execution, "show", "author", model_id=1, args={"output": "simplified"}).payload == {"id": 1, "name": "Tolkien"}


def test_not_found(execution: Execution) -> None:
    result = _run(execution, "show", "authors", model_id="99")
    assert result.status == HTTPStatus.NOT_FOUND
    assert result.payload["code"] == 404
    assert not result.ok


def test_client_errors_carry_their_message(execution: Execution) -> None:
    result = _run(execution, "relationIndex", "books", model_id="1", relation="publisher")
    assert result.payload["message"].startswith("Bad Request: ")
    assert "publisher" in result.payload["message"]
    assert _run(execution, "show", "authors", model_id="99").payload["message"] == "NotFoundError author 99 not found"


@pytest.mark.parametrize(
    "op_type, model, args, kwargs",
    [
        ("index", "publishers", None, {}),
        ("unknown", "books", None, {}),
        ("relationIndex", "books", None, {"model_id": "1", "relation": "publisher"}),
        ("index", "books", {"with": "publisher"}, {}),
        ("show", "books", {"with": "author.publisher"}, {"model_id": "1"}),
    ],
)
def test_bad_requests(execution: Execution, op_type: str, model: str, args, kwargs: dict) -> None:
    result = _run(execution, op_type, model, args, **kwargs)
    assert result.status == HTTPStatus.BAD_REQUEST
    assert result.payload["code"] == 400


def test_columns_left_out_of_the_descriptor_stay_private(app) -> None:
    author = dict(name="author", fields=["id", "name"], relations=["books"], simplified_fields=["id", "name"], execution_types=open_policy())
    execution = _execution((Author, author), (Book, BOOK))
    assert "email" not in _run(execution, "show", "authors", {"make_visible": "email"}, model_id="1").payload
    assert _run(execution, "show", "authors", {"show_only": "slug"}, model_id="1").payload == {}
    result = _run(execution, "show", "authors", {"show_only": "metadata,name"}, model_id="1")
    assert result.ok
    assert result.payload == {"name": "Tolkien"}


# Writes


def test_store(execution: Execution) -> None:
    result = _run(execution, "store", "books", data={"title": "Emma", "price": 7.5, "author_id": 2, "publisher": "x"})
    assert result.status == HTTPStatus.CREATED
    assert result.payload["id"] == 4
    assert result.payload["price"] == 7.5
    assert result.payload["author"]["name"] == "Austen"
    assert DB.session.get(Book, 4).title == "Emma"


def test_store_validation(execution: Execution) -> None:
    result = _run(execution, "store", "books", data={"price": -1})
    assert result.status == HTTPStatus.UNPROCESSABLE_ENTITY
    assert set(result.payload["errors"]) == {"title", "price"}


def test_store_invalid_value(execution: Execution) -> None:
    result = _run(execution, "store", "chapters", data={"title": "Intro", "page": "first"})
    assert result.status == HTTPStatus.UNPROCESSABLE_ENTITY
    assert "page" in result.payload["errors"]


def test_update(execution: Execution) -> None:
    result = _run(execution, "update", "books", model_id="1", data={"price": 12, "id": 50})
    assert result.status == HTTPStatus.OK
    assert result.payload["id"] == 1
    assert result.payload["price"] == 12.0


def test_soft_delete(execution: Execution) -> None:
    result = _run(execution, "destroy", "books", model_id="1")
    assert result.status == HTTPStatus.OK
    assert result.payload["title"] == "The Hobbit"
    assert DB.session.get(Book, 1).deleted_at is not None
    assert _run(execution, "show", "books", model_id="1").status == HTTPStatus.NOT_FOUND
    assert _run(execution, "show", "books", {"with_trashed": "true"}, model_id="1").ok
    assert [item["id"] for item in _run(execution, "index", "books").payload] == [2, 3]


def test_hard_delete(execution: Execution) -> None:
    result = _run(execution, "destroy", "tags", model_id="1")
    assert result.payload == {"id": 1, "name": "fantasy", "books_count": 2}
    assert DB.session.get(Tag, 1) is None
    assert [tag.id for tag in DB.session.get(Book, 1).tags] == [2]


def test_bulk_update(execution: Execution) -> None:
    result = _run(execution, "bulkUpdate", "books", data={"ids": [1, "2"], "price": 5})
    assert sorted(item["id"] for item in result.payload) == [1, 2]
    assert DB.session.get(Book, 2).price == 5.0
    assert DB.session.get(Book, 3).price == 8.0


def test_bulk_destroy(execution: Execution) -> None:
    result = _run(execution, "bulkDestroy", "chapters", {"filter": '{"id": [1, 3]}'})
    assert sorted(item["id"] for item in result.payload) == [1, 3]
    assert DB.session.query(Chapter).count() == 1


def test_bulk_requires_ids(execution: Execution) -> None:
    result = _run(execution, "bulkDestroy", "chapters", data={})
    assert result.status == HTTPStatus.UNPROCESSABLE_ENTITY
    assert result.payload["errors"] == {"ids": ["The ids field is required."]}


def test_export(execution: Execution) -> None:
    result = _run(execution, "export", "books", {"show_only": "title,isbn", "sort_by": "isbn", "sort_order": "desc"})
    assert result.status == HTTPStatus.OK
    assert result.payload == {"header": ["title", "isbn"], "rows": [["Pride and Prejudice", "333"], ["The Lord of the Rings", "222"], ["The Hobbit", "111"]]}


def test_export_header(app) -> None:
    execution = _execution((Book, dict(BOOK, export_header=["isbn", "title"])), (Author, AUTHOR))
    result = _run(execution, "export", "books", {"output": "complete", "filter": '{"author_id": 2}'})
    assert result.payload == {"header": ["isbn", "title"], "rows": [["333", "Pride and Prejudice"]]}


# Functions


def test_function(execution: Execution) -> None:
    result = _run(execution, "function", "authors", function="prolific", data={"minimum": 2})
    assert result.status == HTTPStatus.OK
    assert result.payload == [{"id": 1, "name": "Tolkien"}]


def test_model_function(execution: Execution) -> None:
    result = _run(execution, "modelFunction", "books", {"locale": "nl"}, model_id="1", function="summary")
    assert result.payload == {"title": "The Hobbit", "chapters": 2, "locale": "nl"}


def test_unknown_function(execution: Execution) -> None:
    result = _run(execution, "function", "authors", function="retire")
    assert result.status == HTTPStatus.NOT_ACCEPTABLE
    assert "retire" in result.payload["message"]


def test_function_alias(app) -> None:
    execution = _execution((Author, dict(AUTHOR, functions={"topAuthors": "execute_prolific"})), (Book, BOOK))
    result = _run(execution, "function", "authors", function="topAuthors", data={"minimum": 1})
    assert [item["id"] for item in result.payload] == [1, 2]


# Execution policy


def test_default_policy(app) -> None:
    execution = _execution((Book, {"name": "book", "hidden_by_default": False}), (Author, {"name": "author"}))
    assert _run(execution, "index", "books").status == HTTPStatus.FORBIDDEN
    assert _run(execution, "show", "books", model_id="1").status == HTTPStatus.OK
    assert _run(execution, "relationShow", "books", model_id="1", relation="author", relation_id="1").ok
    assert _run(execution, "store", "books", data={"title": "Emma"}, auth=ADMIN).status == HTTPStatus.FORBIDDEN


def test_authentication_and_roles(app) -> None:
    execution = _execution(
        (Book, {"name": "book", "execution_types": {"store": {}, "update": {"roles": ["editor"]}, "show": {}}}),
        (Author, {"name": "author"}),
    )
    assert _run(execution, "store", "books", data={"title": "Emma"}).status == HTTPStatus.UNAUTHORIZED
    assert _run(execution, "store", "books", data={"title": "Emma"}, auth=EDITOR).status == HTTPStatus.FORBIDDEN
    assert _run(execution, "store", "books", data={"title": "Emma"}, auth=ADMIN).status == HTTPStatus.CREATED
    assert _run(execution, "update", "books", model_id="1", data={"title": "Hobbit"}, auth=EDITOR).ok
    assert _run(execution, "update", "books", model_id="1", data={"title": "Hobbit"}, auth=AuthUser("rd", ["reader"])).status == 403
    assert _run(execution, "show", "books", model_id="1").ok


def test_allowed_models(app) -> None:
    app.config["ALLOWED_MODELS"] = ["book"]
    dynapi.clear_config_cache()
    execution = _execution((Book, {"name": "book", "block_execution_types": ["destroy"]}), (Author, {"name": "author"}))
    assert _run(execution, "index", "books").ok
    assert _run(execution, "index", "authors").status == HTTPStatus.FORBIDDEN
    assert _run(execution, "destroy", "books", model_id="1", auth=ADMIN).status == HTTPStatus.FORBIDDEN


def test_is_allowed_hook(app) -> None:
    hooks = EntityHooks(is_allowed=lambda operation: operation.instance is None or operation.instance.id != 2)
    execution = _execution((Book, BOOK, hooks), (Author, AUTHOR))
    assert _run(execution, "show", "books", model_id="1").ok
    assert _run(execution, "show", "books", model_id="2").status == HTTPStatus.FORBIDDEN


def test_unexpected_errors(app) -> None:
    def fail(operation):
        raise RuntimeError("boom")

    execution = _execution((Book, BOOK, EntityHooks(before_operation=fail)), (Author, AUTHOR))
    result = _run(execution, "index", "books")
    assert result.status == HTTPStatus.INTERNAL_SERVER_ERROR
    assert result.payload["message"].startswith("Generic Error")
    assert "boom" not in result.payload["message"]


# Hooks


def test_hook_order(app) -> None:
    calls = []

    def hooks(name):
        return EntityHooks(
            before_operation=lambda operation: calls.append(f"{name}.before"),
            after_operation=lambda operation, result: calls.append(f"{name}.after") or result,
            before_instance_operation=lambda instance, operation: calls.append(f"{name}.before_instance"),
            after_instance_operation=lambda instance, operation: calls.append(f"{name}.after_instance"),
        )

    execution = _execution((Author, AUTHOR, hooks("author")), (Book, BOOK, hooks("book")), (Tag, TAG, hooks("tag")))
    assert _run(execution, "relationShow", "authors", model_id="1", relation="books", relation_id="1").ok
    assert calls == [
        "book.before_instance",
        "book.before",
        "author.before_instance",
        "author.before",
        "author.after",
        "author.after_instance",
        "book.after",
        "book.after_instance",
    ]

    calls.clear()
    assert _run(execution, "relationOfRelationShow", "authors", model_id="1", relation="books", relation_id="1", ror="tags", ror_id="1").ok
    assert calls[:2] == ["tag.before_instance", "tag.before"]
    assert calls[-2:] == ["tag.after", "tag.after_instance"]


def test_hooks_replace_the_payload_and_the_result(app) -> None:
    hooks = EntityHooks(
        before_operation=lambda operation: dict(operation.data, title=operation.data["title"].upper()),
        after_operation=lambda operation, result: {"stored": result["id"]},
    )
    execution = _execution((Book, BOOK, hooks), (Author, AUTHOR))
    result = _run(execution, "store", "books", data={"title": "Emma"})
    assert result.payload == {"stored": 4}
    assert DB.session.get(Book, 4).title == "EMMA"


def test_instance_hook_replaces_the_instance(app) -> None:
    hooks = EntityHooks(before_instance_operation=lambda instance, operation: DB.session.get(Book, 3))
    execution = _execution((Book, BOOK, hooks), (Author, AUTHOR))
    assert _run(execution, "show", "books", model_id="1").payload["id"] == 3


# Relations


def test_relation_index(execution: Execution) -> None:
    result = _run(execution, "relationIndex", "authors", model_id="1", relation="books")
    payload = result.payload
    assert payload["total"] == 2
    assert [item["id"] for item in payload["data"]] == [1, 2]
    assert "author" not in payload["data"][0]
    assert payload["data"][0]["label"] == "The Hobbit (111)"


def test_relation_index_filters(execution: Execution) -> None:
    args = {"term": "lord", "paginated": "false", "output": "simplified"}
    assert _run(execution, "relationIndex", "authors", args, model_id="tolkien", relation="books").payload == [
        {"id": 2, "title": "The Lord of the Rings"}
    ]
    args = {"filter": '{"id": ["1"]}', "paginated": "false", "output": "simplified"}
    assert _run(execution, "relationIndex", "authors", args, model_id="1", relation="books").payload == [{"id": 1, "title": "The Hobbit"}]
    args = {"sort_by": "title", "sort_order": "desc", "paginated": "false", "output": "simplified"}
    assert [item["id"] for item in _run(execution, "relationIndex", "authors", args, model_id="1", relation="books").payload] == [2, 1]


def test_relation_index_of_a_singular_relation(execution: Execution) -> None:
    result = _run(execution, "relationIndex", "books", model_id="1", relation="author")
    assert result.payload == {"id": 1, "name": "Tolkien", "slug": "tolkien", "books_count": 2}


def test_relation_show(execution: Execution) -> None:
    result = _run(execution, "relationShow", "books", model_id="1", relation="tags", relation_id="2")
    assert result.payload == {"id": 2, "name": "classic", "books_count": 2}
    assert _run(execution, "relationShow", "books", model_id="3", relation="tags", relation_id="1").status == HTTPStatus.NOT_FOUND


def test_relation_store_links_many_to_many(execution: Execution) -> None:
    result = _run(execution, "relationStore", "books", model_id="3", relation="tags", data={"ids": [1]})
    assert result.status == HTTPStatus.CREATED
    assert [item["id"] for item in result.payload] == [1]
    assert sorted(tag.id for tag in DB.session.get(Book, 3).tags) == [1, 2]


def test_relation_store_creates_one_to_many(execution: Execution) -> None:
    result = _run(execution, "relationStore", "authors", model_id="2", relation="books", data={"title": "Emma"})
    assert result.status == HTTPStatus.CREATED
    assert result.payload["title"] == "Emma"
    assert DB.session.get(Book, result.payload["id"]).author_id == 2
    result = _run(execution, "relationStore", "authors", model_id="2", relation="books", data={"isbn": "444"})
    assert result.status == HTTPStatus.UNPROCESSABLE_ENTITY


def test_relation_store_singular(execution: Execution) -> None:
    result = _run(execution, "relationStore", "books", model_id="1", relation="author", data={"name": "Anonymous"})
    assert result.status == HTTPStatus.BAD_REQUEST


def test_relation_update(execution: Execution) -> None:
    result = _run(execution, "relationUpdate", "authors", model_id="1", relation="books", relation_id="2", data={"price": 30})
    assert result.payload["price"] == 30.0
    assert DB.session.get(Book, 2).price == 30.0


def test_relation_destroy(execution: Execution) -> None:
    assert _run(execution, "relationDestroy", "books", model_id="1", relation="tags", relation_id="1").ok
    assert [tag.id for tag in DB.session.get(Book, 1).tags] == [2]
    assert DB.session.get(Tag, 1) is not None

    assert _run(execution, "relationDestroy", "authors", model_id="1", relation="books", relation_id="2").ok
    assert DB.session.get(Book, 2).deleted_at is not None

    assert _run(execution, "relationDestroy", "chapters", model_id="1", relation="book", relation_id="1").ok
    assert DB.session.get(Chapter, 1).book is None


def test_relation_bulk_operations(execution: Execution) -> None:
    result = _run(execution, "relationBulkUpdate", "books", model_id="1", relation="chapters", data={"ids": [1, 2], "page": 5})
    assert [item["id"] for item in result.payload] == [1, 2]
    assert {chapter.page for chapter in DB.session.get(Book, 1).chapters} == {5}

    result = _run(execution, "relationBulkDestroy", "books", model_id="1", relation="tags", data={"ids": [1, 2]})
    assert [item["id"] for item in result.payload] == [1, 2]
    assert DB.session.get(Book, 1).tags == []

    result = _run(execution, "relationBulkDestroy", "books", model_id="1", relation="chapters", data={"ids": [99]})
    assert result.status == HTTPStatus.NOT_FOUND


def test_relation_of_relation(execution: Execution) -> None:
    result = _run(execution, "relationOfRelationIndex", "authors", model_id="1", relation="books", relation_id="1", ror="chapters")
    assert result.payload == [{"id": 1, "title": "An Unexpected Party"}, {"id": 2, "title": "Roast Mutton"}]
    result = _run(execution, "relationOfRelationShow", "authors", model_id="1", relation="books", relation_id="1", ror="tags", ror_id="2")
    assert result.payload == {"id": 2, "name": "classic", "books_count": 2}
    result = _run(execution, "relationOfRelationShow", "authors", model_id="1", relation="books", relation_id="3", ror="tags", ror_id="2")
    assert result.status == HTTPStatus.NOT_FOUND


# Cache


def test_cache(app, response_cache: ResponseCache) -> None:
    app.config["CACHE_ENABLED"] = True
    dynapi.clear_config_cache()
    execution = _execution((Book, BOOK), (Author, AUTHOR), cache=response_cache)
    first = _run(execution, "index", "books")
    assert len(response_cache) == 1
    DB.session.get(Book, 1).title = "Changed behind the cache"
    DB.session.flush()
    assert _run(execution, "index", "books").payload == first.payload
    # other callers don't share the cached response
    assert _run(execution, "index", "books", auth=EDITOR).payload[0]["title"] == "Changed behind the cache"
    assert len(response_cache) == 2

    _run(execution, "update", "books", model_id="2", data={"price": 1})
    assert len(response_cache) == 0


def test_writes_invalidate_the_embedding_entities(app, response_cache: ResponseCache) -> None:
    app.config["CACHE_ENABLED"] = True
    dynapi.clear_config_cache()
    execution = _execution((Book, BOOK), (Author, AUTHOR), (Tag, TAG), (Chapter, CHAPTER), cache=response_cache)
    _run(execution, "show", "authors", {"with": "books"}, model_id="1")
    assert len(response_cache) == 1
    _run(execution, "update", "books", model_id="1", data={"title": "There and Back Again"})
    assert len(response_cache) == 0
    books = _run(execution, "show", "authors", {"with": "books"}, model_id="1").payload["books"]
    assert "There and Back Again" in [book["title"] for book in books]

    response_cache.clear()
    _run(execution, "index", "books")
    _run(execution, "index", "chapters")
    assert len(response_cache) == 2
    # books refer to tags, chapters don't
    _run(execution, "update", "tags", model_id="1", data={"name": "epic"})
    assert len(response_cache) == 1
    assert next(response_cache.keys()).startswith("dynapi_cache:index::chapter::")


def test_cache_disabled(app, response_cache: ResponseCache) -> None:
    execution = _execution((Book, BOOK), (Author, AUTHOR), cache=response_cache)
    _run(execution, "index", "books")
    assert len(response_cache) == 0
