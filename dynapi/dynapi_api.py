# flask_restful_swagger2 API subclass
from http import HTTPStatus
import json
import werkzeug
from flask import Flask, current_app, jsonify, make_response
from flask_restful.utils import cors
from flask_restful_swagger_2 import Api as FRSApiBase
from flask_restful_swagger_2 import validate_definitions_object, parse_method_doc
from flask_restful_swagger_2 import validate_path_item_object
from flask_restful_swagger_2 import extract_swagger_path, Extractor, ValidationError as FRSValidationError
from functools import wraps
from typing import Any, Callable, Iterable, Mapping, Optional, Union
import dynapi
from .cache import ResponseCache
from .config import get_config
from .descriptor import EntityDescriptor
from .errors import DynApiError, GenericError, SystemValidationError
from .execution import Execution
from .hooks import EntityHooks
from .registry import Entity, EntityRegistry
from .resources import ROUTES
from .swagger_doc import parse_object_doc, swagger_doc

HTTP_METHODS = ["GET", "POST", "PATCH", "DELETE", "PUT"]


class DynamicAPI(FRSApiBase):
    """
    Subclass of the flask_restful_swagger API class where we add the expose_object method:
    exposed models are served by the generic dynapi routes, eg.

        GET /api/books?output=complete&with=author
        GET /api/authors/1/books
    """

    _operation_ids = {}
    _custom_swagger = {}

    def __init__(
        self,
        app: Flask,
        host: str = "localhost",
        port: int = 5000,
        prefix: str = "",
        description: str = "dynapi",
        swaggerui_blueprint: bool = True,
        user_loader: Optional[Callable] = None,
        cache: Optional[ResponseCache] = None,
        **kwargs,
    ) -> None:
        """
        :param app: flask app
        :param prefix: url prefix of the api
        :param user_loader: callable returning the AuthContext of the current request or None
        :param cache: ResponseCache, created when CACHE_ENABLED if None
        """
        self._custom_swagger = kwargs.pop("custom_swagger", {})
        self.swaggerui_blueprint = swaggerui_blueprint
        app_db = kwargs.pop("app_db", None)
        decorators = kwargs.pop("decorators", [])
        dynapi.DYNAPI(app, app_db=app_db, prefix=prefix, swaggerui_blueprint=swaggerui_blueprint, user_loader=user_loader)
        # the host shown in the swagger ui, the port may be None when proxied
        if port:
            host = f"{host}:{port}"

        self.registry = EntityRegistry()
        with app.app_context():
            if cache is None and get_config("CACHE_ENABLED"):
                cache = ResponseCache(get_config("REDIS_URL"), get_config("CACHE_TIMEOUT"))
        self.cache = cache
        self.execution = Execution(self.registry, self.cache)

        super().__init__(
            app,
            api_spec_url=kwargs.pop("api_spec_url", "/swagger"),
            host=host,
            description=description,
            prefix=prefix,
            base_path=prefix,
            **kwargs,
        )
        self.update_spec()
        self.expose_routes(decorators)

    def update_spec(self) -> None:
        """
        merge the custom swagger into the swagger.json
        """
        dict_merge(self.get_swagger_doc(), self._custom_swagger)

    def expose_routes(self, decorators: Iterable[Callable] = ()) -> None:
        """
        Add the generic dynapi routes, they serve all exposed models
        :param decorators: custom decorators applied to the resource methods
        """
        for url, resource in ROUTES:
            api_class_name = f"DynApi{resource.__name__}"
            properties = {"execution": self.execution, "custom_decorators": list(decorators)}
            api_class = api_decorator(type(api_class_name, (resource,), properties), swagger_doc(resource))
            endpoint = f"dynapi.{resource.__name__}"
            methods = [method.upper() for method in resource.operations]
            dynapi.log.info(f"Exposing {resource.__name__} on {url}, endpoint: {endpoint}")
            self.add_resource(api_class, url, endpoint=endpoint, methods=methods)

    def expose_object(
        self,
        model: Any,
        descriptor: Union[EntityDescriptor, Mapping[str, Any], None] = None,
        hooks: Optional[EntityHooks] = None,
    ) -> Entity:
        """
        Expose a sqlalchemy model through the generic routes
        :param model: sqlalchemy declarative class
        :param descriptor: EntityDescriptor or descriptor attributes, derived from the model if None
        :param hooks: EntityHooks
        :return: the registered entity
        """
        if not current_app:
            dynapi.log.error("Working outside of app context!")
        entity = self.registry.register(model, descriptor, hooks)
        dynapi.log.info(f"Exposing {model.__name__} as {entity.name}")

        try:
            object_doc = parse_object_doc(model)
        except SystemValidationError as exc:
            dynapi.log.error(f"Failed to parse docstring {exc}")
            object_doc = {}
        object_doc["name"] = entity.name
        self._swagger_object["tags"].append(object_doc)
        self.update_spec()
        return entity

    def expose(self, *models: Any, **descriptors: Any) -> None:
        """
        Expose multiple models at once, the descriptor attributes may be passed by model name
        """
        for model in models:
            self.expose_object(model, descriptors.get(model.__name__))

    def clear_cache(self) -> None:
        if self.cache is not None:
            self.cache.clear()

    @staticmethod
    def get_resource_methods(resource, ordered_methods=None):
        """
        :return: the http methods implemented by the resource, in the order specified by ordered_methods
        """
        if ordered_methods is None:
            ordered_methods = HTTP_METHODS
        resource_methods = getattr(resource, "methods", None) or []
        return [m.lower() for m in ordered_methods if m in resource_methods]

    def add_resource(self, resource, *urls, **kwargs):
        """
        This method is partly copied from flask_restful_swagger_2/__init__.py

        The swagger path items are built from the documentation that was added by api_decorator,
        resources without documentation (like the swagger endpoint itself) are added as is
        """
        path_item = {}
        self._add_oas_resource_definitions(resource, path_item)

        for url in urls:
            if not path_item:
                continue
            if not url.startswith("/"):  # pragma: no cover
                raise SystemValidationError("paths must start with a /")

            swagger_url = extract_swagger_path(url)
            for method in self.get_resource_methods(resource):
                method_doc = path_item.get(method)
                if not method_doc:
                    continue
                method_doc["operationId"] = self._get_operation_id(method_doc.get("summary", ""))

            try:
                validate_path_item_object(path_item)
            except FRSValidationError as exc:  # pragma: no cover
                dynapi.log.exception(exc)
                raise SystemValidationError(f"Validation failed for {path_item}")

            self._swagger_object["paths"][swagger_url] = path_item
            # Check whether we manage to convert to json
            try:
                json.dumps(self._swagger_object)
            except TypeError:  # pragma: no cover
                dynapi.log.critical("Json encoding failed")

        # pylint: disable=bad-super-call
        super(FRSApiBase, self).add_resource(resource, *urls, **kwargs)

    def _add_oas_resource_definitions(self, resource, path_item):
        """
        add the swagger operations of the resource methods to the path item
        and their schema references to the swagger "definitions"
        """
        definitions = {}

        for method in self.get_resource_methods(resource):
            f = getattr(resource, method, None)
            if not f:
                continue

            operation = getattr(f, "__swagger_operation_object", None)
            if operation:
                operation, definitions_ = Extractor.extract(operation)
                path_item[method] = operation
                definitions.update(definitions_)
                summary = parse_method_doc(f, operation)
                if summary:
                    operation["summary"] = summary.split("<br/>")[0]

        try:
            validate_definitions_object(definitions)
        except FRSValidationError:  # pragma: no cover
            raise SystemValidationError(f"Validation failed for {definitions}")

        self._swagger_object["definitions"].update(definitions)

    @classmethod
    def _get_operation_id(cls, summary: str) -> str:
        summary = "".join(c for c in summary if c.isalnum())
        if summary not in cls._operation_ids:
            cls._operation_ids[summary] = 0
        else:
            cls._operation_ids[summary] += 1
        return f"{summary}_{cls._operation_ids[summary]}"


def dict_merge(dct: Any, merge_dct: Any) -> None:
    """Recursive dict merge used for creating the swagger spec.
    Inspired by :meth:``dict.update()``, instead of updating only
    top-level keys, dict_merge recurses down into dicts nested
    to an arbitrary depth, updating keys. The ``merge_dct`` is merged into ``dct``.
    """
    for k in merge_dct:
        if k in dct and isinstance(dct[k], dict):
            dict_merge(dct[k], merge_dct[k])
        else:
            # convert to string, for ex. http return codes
            dct[str(k)] = merge_dct[k]


def api_decorator(cls, swagger_decorator):
    """Decorator for the API views:
        - add swagger documentation ( swagger_decorator )
        - add cors
        - add generic exception handling

    :param cls: The class that will be decorated (a DynApiResource subclass)
    :param swagger_decorator: function that will generate the swagger
    :return: decorated class
    """

    cors_domain = get_config("CORS_DOMAIN")
    for method_name in ["patch", "post", "delete", "get", "put"]:
        method = getattr(cls, method_name, None)
        if not method:
            continue

        decorated_method = method
        # Add cors
        if cors_domain is not None:
            decorated_method = cors.crossdomain(origin=cors_domain)(decorated_method)
        # Add exception handling
        decorated_method = http_method_decorator(decorated_method)

        try:
            # Add swagger documentation
            decorated_method = swagger_decorator(decorated_method)
        except Exception as exc:  # pragma: no cover
            dynapi.log.exception(exc)
            dynapi.log.error(f"Failed to generate documentation for {decorated_method}")

        # Apply the custom decorators, specified as class variable list
        for custom_decorator in getattr(cls, "custom_decorators", []):
            swagger_operation_object = getattr(decorated_method, "__swagger_operation_object", {})
            decorated_method = custom_decorator(decorated_method)
            setattr(decorated_method, "__swagger_operation_object", swagger_operation_object)

        setattr(cls, method_name, decorated_method)
    return cls


def http_method_decorator(fun: Callable) -> Callable:
    """Decorator for the HTTP methods of the dynapi resources
    - commit the database when the operation succeeded, rollback otherwise
    - convert all exceptions to a JSON error response

    This method will be called for all requests
    :param fun:
    :return: wrapped fun
    """

    @wraps(fun)
    def method_wrapper(*args, **kwargs):
        try:
            result = fun(*args, **kwargs)
            if result.status_code < HTTPStatus.BAD_REQUEST.value:
                dynapi.DB.session.commit()
            else:
                dynapi.DB.session.rollback()
            return result

        except DynApiError as exc:
            dynapi.log.exception(exc)
            body, status_code = exc.to_dict(), exc.status_code

        except werkzeug.exceptions.HTTPException as exc:
            dynapi.log.error(exc.description)
            body, status_code = {"message": exc.description, "code": exc.code}, exc.code

        except Exception as exc:
            dynapi.log.exception(exc)
            error = GenericError(str(exc))
            body, status_code = error.to_dict(), error.status_code

        dynapi.DB.session.rollback()
        return make_response(jsonify(body), status_code)

    return method_wrapper
