# Exception Handlers
#
# Client errors (4xx) carry their message. The details of unexpected errors (GenericError)
# are only shown when the loglevel is debug, too much sensitive info might be shown otherwise !
#
# The exceptions are returned by the Execution orchestrator (and by http_method_decorator)
# as a JSON body, for example:
# {
#      "message": "Authorization Error: You do not have permission to update book",
#      "code": 403
# }
#
from werkzeug.exceptions import NotFound
import dynapi
from sqlalchemy.exc import DontWrapMixin
from http import HTTPStatus
from typing import Any, Dict, Optional
from .config import is_debug

HIDDEN_LOG = "(debug logging disabled)"


class DynApiError(Exception, DontWrapMixin):
    """
    Base class of the errors returned to the client
    """

    status_code = HTTPStatus.INTERNAL_SERVER_ERROR.value
    message = ""

    def to_dict(self) -> Dict[str, Any]:
        """
        :return: the JSON error body
        """
        return {"message": self.message, "code": self.status_code}


class BadRequestError(DynApiError):
    """
    This exception is raised when the request can't be handled,
    eg. because it refers to a model or relation that doesn't exist
    """

    status_code = HTTPStatus.BAD_REQUEST.value
    message = "Bad Request: "

    def __init__(self, message: str = "", status_code: int = HTTPStatus.BAD_REQUEST.value) -> None:
        Exception.__init__(self, message)
        self.status_code = status_code
        dynapi.log.error("Bad request: %s", message)
        self.message += message


class ModelNotFoundError(BadRequestError):
    """
    This exception is raised when a url model name doesn't resolve to an exposed entity
    """

    message = "Model Not Found: "


class UnAuthenticatedError(DynApiError):
    """
    This exception is raised when an operation requires an authenticated user
    """

    status_code = HTTPStatus.UNAUTHORIZED.value
    message = "Authentication Error: "

    def __init__(self, message: str = "", status_code: int = HTTPStatus.UNAUTHORIZED.value) -> None:
        Exception.__init__(self, message)
        self.status_code = status_code
        dynapi.log.error("UnAuthenticatedError: %s", message)
        self.message += message


class UnAuthorizedError(DynApiError):
    """
    This exception is raised when an authorization error occured
    we use FORBIDDEN(403) instead of UNAUTHORIZED(401) (old http status code descriptions were not clear)
    """

    status_code = HTTPStatus.FORBIDDEN.value
    message = "Authorization Error: "

    def __init__(self, message: str = "", status_code: int = HTTPStatus.FORBIDDEN.value) -> None:
        Exception.__init__(self, message)
        self.status_code = status_code
        dynapi.log.error("UnAuthorizedError: %s", message)
        self.message += message


class NotFoundError(DynApiError, NotFound):
    """
    This exception is raised when an item was not found
    """

    status_code = HTTPStatus.NOT_FOUND.value
    message = "NotFoundError "

    def __init__(self, message: str = "", status_code: int = HTTPStatus.NOT_FOUND.value) -> None:
        DynApiError.__init__(self, message)
        self.status_code = status_code
        dynapi.log.error("Not found: %s", message)
        self.message += message


class NotAcceptableError(DynApiError):
    """
    This exception is raised when a requested function doesn't exist on the model
    """

    status_code = HTTPStatus.NOT_ACCEPTABLE.value
    message = "Not Acceptable: "

    def __init__(self, message: str = "", status_code: int = HTTPStatus.NOT_ACCEPTABLE.value) -> None:
        Exception.__init__(self, message)
        self.status_code = status_code
        dynapi.log.error("Not acceptable: %s", message)
        self.message += message


class ValidationError(DynApiError):
    """
    This exception is raised when invalid input has been detected (client side input)
    Always send back the message to the client in the response
    """

    status_code = HTTPStatus.UNPROCESSABLE_ENTITY.value
    message = "Validation Error: "

    def __init__(
        self, message: str = "", errors: Optional[Dict[str, Any]] = None, status_code: int = HTTPStatus.UNPROCESSABLE_ENTITY.value
    ) -> None:
        Exception.__init__(self, message)
        self.status_code = status_code
        self.errors = dict(errors or {})
        dynapi.log.warning("ValidationError: %s", message)
        self.message += message

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["errors"] = self.errors
        return result


class GenericError(DynApiError):
    """
    This exception is raised when an error has been detected
    """

    status_code = HTTPStatus.INTERNAL_SERVER_ERROR.value  # 500
    message = "Generic Error: "

    def __init__(self, message: str, status_code: int = HTTPStatus.INTERNAL_SERVER_ERROR.value) -> None:
        Exception.__init__(self, message)
        self.status_code = status_code
        dynapi.log.error("Generic Error: %s", message)
        if is_debug():
            self.message += str(message)
        else:
            self.message += HIDDEN_LOG


class SystemValidationError(DynApiError):
    """
    This exception is raised when a descriptor or the api itself is misconfigured,
    it's raised when the entities are registered, not while serving requests
    """

    status_code = HTTPStatus.INTERNAL_SERVER_ERROR.value
    message = "System Validation Error: "

    def __init__(self, message: str = "") -> None:
        Exception.__init__(self, message)
        dynapi.log.error("System Validation Error: %s", message)
        self.message += message
