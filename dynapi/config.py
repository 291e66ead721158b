# Configuration settings should be set in app.config
# The DYNAPI class attributes hold the defaults, the environment is the last resort
import os
import logging
from flask import current_app
from functools import lru_cache
import dynapi
from typing import Any, Dict


@lru_cache(maxsize=128)
def get_config(option: str) -> Any:
    """Retrieve a configuration parameter from the app
    :param option: configuration parameter
    :return: configuration value
    """
    try:
        result = current_app.config[option]
    except (KeyError, RuntimeError):
        # no app context or not configured in the app
        result = getattr(dynapi.DYNAPI, option, os.environ.get(option, None))
    return result


def clear_config_cache() -> None:
    """
    The config is cached, call this when the app config changes at runtime
    """
    get_config.cache_clear()


def normalized_execution_types(execution_types: Any) -> Dict[str, Dict[str, Any]]:
    """
    Execution types may be configured as a list of operation names or as a mapping
    of operation name to an options mapping (eg. {"index": {"authentication": False}})
    :param execution_types: list or dict
    :return: dict of operation name to options
    """
    if not execution_types:
        return {}
    if isinstance(execution_types, (list, tuple, set, frozenset)):
        return {str(op_type): {} for op_type in execution_types}
    return {str(op_type): dict(options or {}) for op_type, options in dict(execution_types).items()}


def is_debug() -> bool:
    """
    :return: True when the dynapi logger is in debug mode, error messages are hidden otherwise
    """
    return dynapi.log.getEffectiveLevel() < logging.INFO
