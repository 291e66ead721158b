# flake8: noqa: F401
#
# dynapi_init has to be imported first: it creates the DB and the log used by the other modules
#
from .dynapi_init import DB, log, DYNAPI, DynApiRequest
from .config import get_config, clear_config_cache
from .errors import (
    DynApiError,
    BadRequestError,
    ModelNotFoundError,
    UnAuthenticatedError,
    UnAuthorizedError,
    NotFoundError,
    NotAcceptableError,
    ValidationError,
    GenericError,
    SystemValidationError,
)
from .json_encoder import DynApiJSONProvider
from .auth import AuthContext, AuthUser, current_user
from .descriptor import EntityDescriptor, FieldDescriptor
from .hooks import EntityHooks
from .registry import Entity, EntityRegistry, describe_model
from .request import RequestContext
from .visibility import VisibilityOverrides, VisibilityPlan, VisibilityResolver
from .walker import RelationGraphWalker, RelationTree
from .query import QueryResult, QueryShaper
from .shaping import ResultShaper
from .pagination import paginated_details
from .cache import ResponseCache
from .execution import Execution, ExecutionResult, Operation
from .loader import build_descriptors, load_descriptors
from .dynapi_api import DynamicAPI
from .__about__ import __version__, __description__

DynApi = DynamicAPI

__all__ = (
    "__version__",
    "__description__",
    #
    "DynamicAPI",
    "DynApi",
    "DYNAPI",
    # descriptors:
    "EntityDescriptor",
    "FieldDescriptor",
    "EntityHooks",
    "describe_model",
    "load_descriptors",
    "build_descriptors",
    # engine:
    "Entity",
    "EntityRegistry",
    "RequestContext",
    "VisibilityOverrides",
    "VisibilityPlan",
    "VisibilityResolver",
    "RelationGraphWalker",
    "RelationTree",
    "QueryShaper",
    "QueryResult",
    "ResultShaper",
    "paginated_details",
    "ResponseCache",
    "Execution",
    "ExecutionResult",
    "Operation",
    # auth:
    "AuthContext",
    "AuthUser",
    "current_user",
    # Errors:
    "DynApiError",
    "BadRequestError",
    "ModelNotFoundError",
    "UnAuthenticatedError",
    "UnAuthorizedError",
    "NotFoundError",
    "NotAcceptableError",
    "ValidationError",
    "GenericError",
    "SystemValidationError",
    # request
    "DynApiRequest",
)
