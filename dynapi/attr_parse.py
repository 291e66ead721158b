# attr_parse.py: convert payload values to the python type of their column
import datetime
import sqlalchemy
import dynapi
from typing import Any
from .errors import ValidationError


def parse_attr(column: Any, name: str, attr_val: Any) -> Any:
    """
    Parse the supplied `attr_val` so it can be saved in the SQLAlchemy `column`

    :param column: SQLAlchemy column
    :param name: attribute name, used in the error messages
    :param attr_val: payload value
    :return: processed value
    :raises ValidationError: the value can't be converted
    """
    if attr_val is None:
        return attr_val

    try:
        python_type = column.type.python_type
    except NotImplementedError as exc:
        # custom column types handle their own conversion
        dynapi.log.debug(exc)
        return attr_val

    # skip type coercion on JSON columns, since they could be anything
    if isinstance(column.type, sqlalchemy.types.JSON):
        return attr_val

    if isinstance(attr_val, python_type) and not (python_type is datetime.date and isinstance(attr_val, datetime.datetime)):
        return attr_val

    try:
        if python_type is datetime.datetime:
            # "%Y-%m-%d %H:%M:%S[.%f]" and the ISO 8601 "T" separated format
            return datetime.datetime.fromisoformat(str(attr_val).replace("Z", "+00:00"))
        if python_type is datetime.date:
            if isinstance(attr_val, datetime.datetime):
                return attr_val.date()
            return datetime.date.fromisoformat(str(attr_val)[:10])
        if python_type is datetime.time:
            return datetime.time.fromisoformat(str(attr_val))
        if python_type is bool and isinstance(attr_val, str):
            return attr_val.strip().lower() in ("true", "1", "yes", "on")
        return python_type(attr_val)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid value for {name}", errors={name: [f"Invalid {python_type.__name__} value {attr_val!r} ({exc})"]})
