"""
Request parsing

DynApiRequest is installed as the flask request class by DYNAPI.init_app.
The query string arguments are parsed into an immutable RequestContext:

- output: simplified, complete or extensive
- request_output: JSON list of the fields to return, nested lists select relation fields
- show_only, make_visible, make_hidden, with, with_count: csv or JSON lists
- paginated, page, per_page
- sort_by, sort_order or sort (JSON [sort_by, sort_order])
- term, filter (JSON object)
- withTranslations, locale, with_trashed
"""
import json
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple
from flask import Request
from werkzeug.datastructures import MultiDict
import dynapi
from .config import get_config
from .constants import COMPLETE_OUTPUT_OPERATIONS, OUTPUT_COMPLETE, OUTPUT_MODES, OUTPUT_SIMPLIFIED
from .errors import BadRequestError
from .util import convert_boolean, parse_json_param, parse_list_param

SORT_ORDERS = ("asc", "desc")


@dataclass(frozen=True)
class RequestContext:
    """
    The output shaping parameters of a request
    """

    output: Optional[str] = None
    request_output: Tuple[Any, ...] = ()
    paginated: Optional[bool] = None
    page: int = 1
    per_page: int = 10
    sort_by: str = "id"
    sort_order: str = "asc"
    show_only: Tuple[str, ...] = ()
    make_visible: Tuple[str, ...] = ()
    make_hidden: Tuple[str, ...] = ()
    with_relations: Tuple[str, ...] = ()
    with_count: Tuple[str, ...] = ()
    term: Optional[str] = None
    filter: Mapping[str, Any] = field(default_factory=dict)
    with_translations: Optional[bool] = None
    locale: str = "en"
    with_trashed: bool = False
    # request signature, used for the pagination urls and the cache keys
    method: str = "GET"
    path: str = ""
    query: Tuple[Tuple[str, str], ...] = ()
    body: Any = None

    def output_for(self, op_type: str) -> str:
        """
        :return: the requested output mode or the default mode of the operation type
        """
        if self.output:
            return self.output
        if op_type in COMPLETE_OUTPUT_OPERATIONS:
            return OUTPUT_COMPLETE
        return OUTPUT_SIMPLIFIED

    @property
    def filters(self) -> Dict[str, Any]:
        """
        :return: the filter parameter, with the term parameter merged in
        """
        result = dict(self.filter)
        if self.term not in (None, "") and "term" not in result:
            result["term"] = self.term
        return result

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.per_page

    @classmethod
    def from_args(cls, args: Any, method: str = "GET", path: str = "", body: Any = None) -> "RequestContext":
        """
        Parse the request arguments
        :param args: MultiDict (or mapping) of query string arguments
        :raises BadRequestError: invalid parameter values
        """
        if not isinstance(args, MultiDict):
            args = MultiDict(args or {})

        output = args.get("output") or None
        if output is not None and output not in OUTPUT_MODES:
            raise BadRequestError(f"Invalid output {output}, valid values are {', '.join(OUTPUT_MODES)}")

        try:
            request_output = parse_json_param(args.get("request_output"), [])
            filters = parse_json_param(args.get("filter"), {})
            sort = parse_json_param(args.get("sort"), None)
            show_only = parse_list_param(args.get("show_only"))
            make_visible = parse_list_param(args.get("make_visible"))
            make_hidden = parse_list_param(args.get("make_hidden"))
            with_relations = parse_list_param(args.get("with"))
            with_count = parse_list_param(args.get("with_count"))
        except (ValueError, TypeError) as exc:
            raise BadRequestError(f"Invalid request parameter: {exc}")

        if not isinstance(request_output, list):
            raise BadRequestError("request_output must be a list")
        if not isinstance(filters, dict):
            raise BadRequestError("filter must be an object")

        sort_by = args.get("sort_by") or get_config("DEFAULT_SORT_BY")
        sort_order = args.get("sort_order") or get_config("DEFAULT_SORT_ORDER")
        if sort:
            if not isinstance(sort, list):
                sort = [sort]
            sort_by = str(sort[0])
            if len(sort) > 1:
                sort_order = str(sort[1])
        sort_order = str(sort_order).lower()
        if sort_order not in SORT_ORDERS:
            raise BadRequestError(f"Invalid sort order {sort_order}")

        page = args.get("page", 1, type=int) or 1
        per_page = args.get("per_page", get_config("DEFAULT_PER_PAGE"), type=int) or get_config("DEFAULT_PER_PAGE")
        if page < 1:
            page = 1
        per_page = max(1, min(int(per_page), int(get_config("MAX_PER_PAGE"))))

        return cls(
            output=output,
            request_output=tuple(_freeze(request_output)),
            paginated=convert_boolean(args.get("paginated")),
            page=page,
            per_page=per_page,
            sort_by=sort_by,
            sort_order=sort_order,
            show_only=tuple(show_only),
            make_visible=tuple(make_visible),
            make_hidden=tuple(make_hidden),
            with_relations=tuple(with_relations),
            with_count=tuple(with_count),
            term=args.get("term") or None,
            filter=filters,
            with_translations=convert_boolean(args.get("withTranslations", args.get("with_translations"))),
            locale=args.get("locale") or get_config("DEFAULT_LOCALE"),
            with_trashed=bool(convert_boolean(args.get("with_trashed"))),
            method=method.upper(),
            path=path,
            query=tuple(sorted((key, value) for key, value in args.items(multi=True))),
            body=body,
        )


def _freeze(items):
    """
    nested request_output lists become tuples
    """
    return [tuple(_freeze(item)) if isinstance(item, list) else item for item in items]


# pylint: disable=too-many-ancestors
class DynApiRequest(Request):
    """
    Flask request with the dynapi argument parsing
    """

    _dynapi_context = None

    def get_payload(self) -> Dict[str, Any]:
        """
        :return: the JSON request body, an empty dict if there's none
        :raises BadRequestError: the body is not a JSON object
        """
        if not self.get_data(cache=True):
            return {}
        try:
            result = json.loads(self.get_data(cache=True, as_text=True))
        except ValueError as exc:
            raise BadRequestError(f"Invalid JSON payload: {exc}")
        if not isinstance(result, dict):
            raise BadRequestError(f"Invalid JSON payload: {result}")
        return result

    @property
    def dynapi_context(self) -> RequestContext:
        """
        :return: the RequestContext, parsed on first use
        """
        if self._dynapi_context is None:
            body = self.get_payload() if self.method == "POST" else None
            self._dynapi_context = RequestContext.from_args(self.args, method=self.method, path=self.base_url, body=body)
            dynapi.log.debug(f"Request context: {self._dynapi_context}")
        return self._dynapi_context
