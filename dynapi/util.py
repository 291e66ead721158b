# Naming conventions, parameter conversion and ordered list helpers
import json
import re
import inflect
from typing import Any, Iterable, List, Optional

_inflect_engine = inflect.engine()

TRUE_VALUES = ("true", "1", "yes", "on")
FALSE_VALUES = ("false", "0", "no", "off")


def unique(*iterables: Iterable) -> List:
    """
    Concatenate the iterables, dropping duplicates but keeping the first occurrence order
    """
    result = {}
    for iterable in iterables:
        for item in iterable or ():
            result.setdefault(item, None)
    return list(result)


def difference(items: Iterable, *others: Iterable) -> List:
    """
    :return: the ordered, deduplicated items that don't occur in any of the others
    """
    excluded = set()
    for other in others:
        excluded.update(other or ())
    return [item for item in unique(items) if item not in excluded]


def snake_case(name: str) -> str:
    """
    recalculateTotals, RecalculateTotals, recalculate-totals => recalculate_totals
    """
    name = re.sub(r"[\s\-]+", "_", str(name).strip())
    name = re.sub(r"(?<=[a-z0-9])([A-Z])", r"_\1", name)
    return name.lower()


def singularize(word: str) -> str:
    """
    :return: the singular form of an (english) noun, the word itself when it's already singular
    """
    if not word:
        return word
    singular = _inflect_engine.singular_noun(word)
    return singular or word


def entity_name(name: str) -> str:
    """
    Convert a url segment or relation name to the conventional entity name:
    the snake case, singular form, eg. "OrderItems" and "order-items" => "order_item"
    """
    words = snake_case(name).split("_")
    words[-1] = singularize(words[-1])
    return "_".join(words)


def natural_sort_key(value: Any) -> tuple:
    """
    Case insensitive natural sort key: "item2" < "item10", None values last
    """
    if value is None:
        return (True, [])
    parts = re.split(r"(\d+)", str(value))
    return (False, [int(part) if part.isdigit() else part.lower() for part in parts])


def convert_boolean(value: Any) -> Optional[bool]:
    """
    Convert request parameter values like "true", "0", "off" to booleans
    :return: the boolean value or None if the value isn't recognized
    """
    if isinstance(value, bool) or value is None:
        return value
    value = str(value).strip().lower()
    if value in TRUE_VALUES:
        return True
    if value in FALSE_VALUES:
        return False
    return None


def parse_json_param(value: Any, default: Any = None) -> Any:
    """
    Request parameters like filter and request_output are sent as JSON strings
    :raises ValueError: invalid JSON
    """
    if value is None or value == "":
        return default
    if not isinstance(value, str):
        return value
    return json.loads(value)


def parse_list_param(value: Any) -> List[str]:
    """
    A list parameter may be sent as a JSON array or as comma separated values
    """
    if value is None or value == "":
        return []
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value]
    value = str(value).strip()
    if value.startswith("["):
        return [str(item) for item in json.loads(value)]
    return [item.strip() for item in value.split(",") if item.strip()]
