# pagination.py: the paginated response envelope
import math
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
from urllib.parse import urlencode

PAGE_PARAMETERS = ("page", "paginated")


def page_url(path: str, page: Optional[int], url_params: str = "") -> Optional[str]:
    """
    :return: the url of a page, None if there's no such page
    """
    if page is None:
        return None
    return f"{path}?paginated=true&page={page}{url_params}"


def query_params(query: Iterable[Tuple[str, str]]) -> str:
    """
    The query string arguments of the request that are repeated in the page urls, eg. "&output=complete&per_page=2"
    :param query: (key, value) pairs
    """
    params = [(key, value) for key, value in query if key not in PAGE_PARAMETERS]
    return f"&{urlencode(params)}" if params else ""


def page_slice(page: int, per_page: int) -> Tuple[int, int]:
    """
    :return: the start and stop index of a page (page numbers start at 1)
    """
    start = (max(page, 1) - 1) * per_page
    return start, start + per_page


def paginate_list(items: Sequence[Any], page: int, per_page: int) -> List[Any]:
    """
    In memory pagination, used for client side sorted and relation collections
    """
    start, stop = page_slice(page, per_page)
    return list(items[start:stop])


def paginated_details(data: List[Any], total: int, page: int, per_page: int, path: str, url_params: str = "") -> Dict[str, Any]:
    """
    Create the paginated response envelope
    :param data: the (shaped) items of the current page
    :param total: total number of items
    :param page: current page number
    :param per_page: page size
    :param path: url of the collection, without query string
    :param url_params: additional query string parameters for the page urls, eg. "&output=complete"
    :return: envelope dict
    """
    last_page = None if total == 0 else math.ceil(total / per_page)
    next_page = None if last_page is None or page == last_page else page + 1
    prev_page = None if last_page is None or page == 1 else page - 1
    return {
        "current_page": page,
        "data": data,
        "first_page_url": None if total == 0 else page_url(path, 1, url_params),
        "from": 1 if total == 0 else page * per_page - per_page + 1,
        "last_page": last_page,
        "last_page_url": page_url(path, last_page, url_params),
        "next_page_url": page_url(path, next_page, url_params),
        "path": path,
        "per_page": per_page,
        "prev_page_url": page_url(path, prev_page, url_params),
        "to": 1 if total == 0 else page * per_page,
        "total": total,
    }
