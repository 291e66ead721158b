import pytest
from werkzeug.datastructures import MultiDict

import dynapi
from dynapi import BadRequestError, RequestContext
from dynapi.util import convert_boolean, entity_name, natural_sort_key, parse_list_param, snake_case, unique


def test_defaults() -> None:
    context = RequestContext.from_args({})
    assert context.output is None
    assert context.page == 1
    assert context.per_page == 10
    assert context.sort_by == "id"
    assert context.sort_order == "asc"
    assert context.paginated is None
    assert context.locale == "en"
    assert not context.with_trashed


def test_output_defaults_per_operation() -> None:
    context = RequestContext.from_args({})
    assert context.output_for("index") == "simplified"
    assert context.output_for("show") == "complete"
    assert context.output_for("relationIndex") == "complete"
    assert context.output_for("export") == "simplified"
    assert RequestContext.from_args({"output": "extensive"}).output_for("index") == "extensive"


def test_invalid_output() -> None:
    with pytest.raises(BadRequestError):
        RequestContext.from_args({"output": "everything"})


def test_list_parameters() -> None:
    context = RequestContext.from_args(
        {
            "show_only": "id, name",
            "make_visible": '["email"]',
            "make_hidden": "slug",
            "with": "books:complete.chapters,tags",
            "with_count": "books",
        }
    )
    assert context.show_only == ("id", "name")
    assert context.make_visible == ("email",)
    assert context.make_hidden == ("slug",)
    assert context.with_relations == ("books:complete.chapters", "tags")
    assert context.with_count == ("books",)


def test_request_output_is_frozen() -> None:
    context = RequestContext.from_args({"request_output": '["title", ["author", "name"]]'})
    assert context.request_output == ("title", ("author", "name"))


@pytest.mark.parametrize(
    "args",
    [
        {"request_output": '{"title": 1}'},
        {"request_output": "[title"},
        {"filter": "[1, 2]"},
        {"filter": "{invalid"},
        {"sort_order": "up"},
    ],
)
def test_invalid_parameters(args: dict) -> None:
    with pytest.raises(BadRequestError):
        RequestContext.from_args(args)


def test_paging_limits(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(dynapi.DYNAPI, "MAX_PER_PAGE", 50)
    dynapi.clear_config_cache()
    context = RequestContext.from_args({"page": "-2", "per_page": "500", "paginated": "true"})
    assert context.page == 1
    assert context.per_page == 50
    assert context.paginated is True
    assert RequestContext.from_args({"page": "3", "per_page": "20"}).offset == 40


def test_sort() -> None:
    context = RequestContext.from_args({"sort": '["title", "DESC"]'})
    assert context.sort_by == "title"
    assert context.sort_order == "desc"
    context = RequestContext.from_args({"sort_by": "name"})
    assert context.sort_by == "name"
    assert context.sort_order == "asc"


def test_filters_include_the_term() -> None:
    context = RequestContext.from_args({"filter": '{"author_id": [1, 2]}', "term": "hobbit", "with_trashed": "1"})
    assert context.filters == {"author_id": [1, 2], "term": "hobbit"}
    assert context.with_trashed


def test_query_signature() -> None:
    args = MultiDict([("page", "2"), ("output", "complete"), ("with", "tags")])
    context = RequestContext.from_args(args, method="get", path="/api/books")
    assert context.method == "GET"
    assert context.query == (("output", "complete"), ("page", "2"), ("with", "tags"))


def test_naming_conventions() -> None:
    assert snake_case("recalculateTotals") == "recalculate_totals"
    assert snake_case("order-items") == "order_items"
    assert entity_name("OrderItems") == "order_item"
    assert entity_name("categories") == "category"
    assert entity_name("author") == "author"


def test_helpers() -> None:
    assert unique([1, 2], [2, 3], None) == [1, 2, 3]
    assert convert_boolean("Off") is False
    assert convert_boolean("yes") is True
    assert convert_boolean("maybe") is None
    assert parse_list_param('["a", "b"]') == ["a", "b"]
    assert parse_list_param("a,,b") == ["a", "b"]
    assert sorted(["item10", "Item2", None, "item1"], key=natural_sort_key) == ["item1", "Item2", "item10", None]
