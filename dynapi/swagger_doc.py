#
# Functions for api documentation: these decorators generate the swagger documentation
# of the generic dynapi routes
#
import inspect
from http import HTTPStatus
import yaml
from flask_restful_swagger_2 import swagger
import dynapi
from .config import is_debug
from .constants import (
    BULK_DESTROY,
    BULK_UPDATE,
    DESTROY,
    EXPORT,
    FUNCTION,
    INDEX,
    MODEL_FUNCTION,
    OUTPUT_MODES,
    RELATION_BULK_DESTROY,
    RELATION_BULK_UPDATE,
    RELATION_DESTROY,
    RELATION_INDEX,
    RELATION_OF_RELATION_INDEX,
    RELATION_OF_RELATION_SHOW,
    RELATION_SHOW,
    RELATION_STORE,
    RELATION_UPDATE,
    SHOW,
    STORE,
    UPDATE,
    CREATE_OPERATIONS,
)
from .errors import SystemValidationError
from typing import Any, Callable, Dict, List

DOC_DELIMITER = "---"  # used as delimiter between the swagger yaml spec and regular documentation

OPERATION_SUMMARIES = {
    INDEX: "Retrieve a collection of {model} objects",
    SHOW: "Retrieve a {model} object",
    STORE: "Create a {model} object",
    UPDATE: "Update a {model} object",
    DESTROY: "Delete a {model} object",
    BULK_UPDATE: "Update multiple {model} objects",
    BULK_DESTROY: "Delete multiple {model} objects",
    EXPORT: "Export a collection of {model} objects",
    FUNCTION: "Call a {model} function",
    MODEL_FUNCTION: "Call a {model} object function",
    RELATION_INDEX: "Retrieve the related objects of a {model} object",
    RELATION_SHOW: "Retrieve a related object of a {model} object",
    RELATION_STORE: "Add related objects to a {model} object",
    RELATION_UPDATE: "Update a related object of a {model} object",
    RELATION_DESTROY: "Remove a related object from a {model} object",
    RELATION_BULK_UPDATE: "Update multiple related objects of a {model} object",
    RELATION_BULK_DESTROY: "Remove multiple related objects from a {model} object",
    RELATION_OF_RELATION_INDEX: "Retrieve the objects related to a related object",
    RELATION_OF_RELATION_SHOW: "Retrieve an object related to a related object",
}

# additional responses added when in debug mode to make swagger-check succeed
debug_responses = {
    HTTPStatus.BAD_REQUEST.value: {"description": HTTPStatus.BAD_REQUEST.description},
    HTTPStatus.INTERNAL_SERVER_ERROR.value: {"description": "Internal Server Error"},
}

error_responses = {
    HTTPStatus.UNAUTHORIZED.value: {"description": HTTPStatus.UNAUTHORIZED.description},
    HTTPStatus.FORBIDDEN.value: {"description": HTTPStatus.FORBIDDEN.description},
    HTTPStatus.NOT_FOUND.value: {"description": HTTPStatus.NOT_FOUND.description},
    HTTPStatus.UNPROCESSABLE_ENTITY.value: {"description": HTTPStatus.UNPROCESSABLE_ENTITY.description},
}


def parse_object_doc(object: Callable) -> Dict[str, Any]:
    """
    Parse the yaml description from the documented methods
    """
    api_doc = {}
    obj_doc = str(inspect.getdoc(object))
    raw_doc = obj_doc.split(DOC_DELIMITER)[0]
    yaml_doc = None

    try:
        yaml_doc = yaml.safe_load(raw_doc)
    except (SyntaxError, yaml.scanner.ScannerError, yaml.parser.ParserError) as exc:
        dynapi.log.error(f"Failed to parse documentation {raw_doc} ({exc})")
        yaml_doc = {"description": raw_doc}
    except Exception:
        raise SystemValidationError("Failed to parse api doc")

    if isinstance(yaml_doc, dict):
        api_doc.update(yaml_doc)

    return api_doc


def query_parameter(name: str, description: str, type: str = "string", **kwargs: Any) -> Dict[str, Any]:
    result = {"name": name, "in": "query", "type": type, "required": False, "description": description}
    result.update(kwargs)
    return result


def default_output_parameters() -> List[Dict[str, Any]]:
    """
    :return: the output shaping query parameters
    """
    return [
        query_parameter("output", "Output mode", enum=list(OUTPUT_MODES)),
        query_parameter("request_output", 'JSON list of the fields to return, eg. ["id", "name", ["author", "name"]]'),
        query_parameter("show_only", "Only return these fields (comma separated or JSON list)"),
        query_parameter("make_visible", "Additional fields to return"),
        query_parameter("make_hidden", "Fields that shouldn't be returned"),
        query_parameter("with", 'Relations to expand, eg. "author:complete.books"'),
        query_parameter("with_count", "Relations to count"),
        query_parameter("withTranslations", "Return the translations", type="boolean"),
        query_parameter("locale", "Locale of the translated fields"),
    ]


def default_collection_parameters() -> List[Dict[str, Any]]:
    """
    :return: the filter, sort and paging query parameters of collections
    """
    return [
        query_parameter("paginated", "Paginate the result", type="boolean"),
        query_parameter("page", "Page number", type="integer", default=1),
        query_parameter("per_page", "Number of items per page", type="integer"),
        query_parameter("sort_by", "Sort field"),
        query_parameter("sort_order", "Sort order", enum=["asc", "desc"]),
        query_parameter("term", "Free text search"),
        query_parameter("filter", 'JSON filter object, eg. {"name": "x", "id": [1, 2]}'),
        query_parameter("with_trashed", "Include soft deleted items", type="boolean"),
    ]


def swagger_doc(cls, tags=None):
    """
    Document the HTTP methods of a dynapi resource class,
    cls.operations maps the method names to the operation types
    """

    def swagger_doc_gen(func):
        http_method = func.__name__.lower()
        op_type = cls.operations[http_method]
        doc_tags = tags if tags is not None else ["dynapi"]
        doc = {"tags": doc_tags, "summary": OPERATION_SUMMARIES[op_type].format(model="model"), "produces": ["application/json"]}

        parameters = []
        for name in inspect.signature(func).parameters:
            if name == "self":
                continue
            parameters.append({"name": name, "in": "path", "type": "string", "required": True})
        if http_method == "get":
            parameters += default_output_parameters()
            if op_type in (INDEX, EXPORT, RELATION_INDEX, RELATION_OF_RELATION_INDEX):
                parameters += default_collection_parameters()
        elif http_method in ("post", "put", "patch", "delete"):
            parameters.append(
                {"name": "body", "in": "body", "description": "JSON payload", "schema": {"type": "object"}, "required": False}
            )

        status = HTTPStatus.CREATED if op_type in CREATE_OPERATIONS else HTTPStatus.OK
        responses = {status.value: {"description": status.description}}
        responses.update(error_responses)
        if is_debug():
            responses.update(debug_responses)

        doc["parameters"] = parameters
        doc["responses"] = {str(code): response for code, response in responses.items()}
        doc.update(parse_object_doc(func))
        return swagger.doc(doc)(func)

    return swagger_doc_gen
