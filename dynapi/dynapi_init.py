import logging
import os
import sys
from flask_swagger_ui import get_swaggerui_blueprint
from flask import Flask, g
from flask_sqlalchemy import SQLAlchemy
from .request import DynApiRequest
from .json_encoder import DynApiJSONProvider
from .config import get_config
import dynapi
import flask.app
from typing import Callable, Optional


class DYNAPI:
    """This class configures the Flask application to serve the dynapi routes
    :param app: a Flask application.
    :param prefix: URL prefix of the api, the swagger ui is hosted at <prefix>/docs
    :param LOGLEVEL: loglevel configuration variable, values from logging module (0: trace, .. 50: critical)
    """

    # Configuration settings are stored as class variables
    DEFAULT_PER_PAGE = 10
    MAX_PER_PAGE = 1000
    DEFAULT_SORT_BY = "id"
    DEFAULT_SORT_ORDER = "asc"
    DEFAULT_LOCALE = "en"
    SUPER_ADMIN_ROLE = "super_admin"
    HIDDEN_BY_DEFAULT = None  # True or False overrides the hidden_by_default of all the descriptors
    EXECUTION_TYPES = {}  # operation type => options, used for entities without execution_types
    ALLOWED_MODELS = []  # entity names that may execute all operations, "*" for all entities
    DYNAMIC_ROUTE_MODULES = {"*": "*"}  # url model name => entity name, "*" enables the naming convention
    HAS_RELATION_MODELS = {}  # "<entity>_<relation>" => entity name of the relation target
    MAX_RELATION_DEPTH = 3
    CACHE_ENABLED = False
    CACHE_TIMEOUT = 86400  # seconds a cached response stays valid
    REDIS_URL = "redis://localhost:6379/0"
    SOFT_DELETE_COLUMN = "deleted_at"
    SLUG_COLUMN = "slug"
    CORS_DOMAIN = None
    LOGLEVEL = logging.WARNING

    def __init__(self, app: flask.app.Flask, *args, **kwargs) -> None:
        """
        Constructor
        """
        self.app = app
        if app is not None:
            self.init_app(app, *args, **kwargs)

    def init_app(
        self,
        app: flask.app.Flask,
        prefix: str = "",
        app_db: Optional[SQLAlchemy] = None,
        swaggerui_blueprint: bool = True,
        user_loader: Optional[Callable] = None,
        **kwargs,
    ) -> None:
        """
        API and application initialization
        :param user_loader: callable that returns the AuthContext of the current request or None
        """
        if not isinstance(app, Flask):  # pragma: no cover
            raise TypeError("'app' should be Flask.")

        if app_db is None:
            app_db = app.extensions["sqlalchemy"]

        dynapi.DB = self.db = app_db

        app.request_class = DynApiRequest
        app.json = DynApiJSONProvider(app)
        app.url_map.strict_slashes = False

        if app.config.get("DEBUG", False):
            log.setLevel(logging.DEBUG)

        # Register the swagger ui blueprint
        if swaggerui_blueprint is True:
            swaggerui_blueprint = get_swaggerui_blueprint(
                f"{prefix}/docs", f"{prefix}/swagger.json", config={"docExpansion": "none", "defaultModelsExpandDepth": -1}
            )
            app.register_blueprint(swaggerui_blueprint, url_prefix=f"{prefix}/docs")

        for conf_name, conf_val in kwargs.items():
            setattr(DYNAPI, conf_name, conf_val)

        get_config.cache_clear()

        @app.before_request
        def load_user():
            # the authenticated user of the request, see dynapi.auth.current_user
            g.dynapi_user = user_loader() if user_loader is not None else None

        # pylint: disable=unused-argument,unused-variable
        @app.teardown_appcontext
        def shutdown_session(exception=None):
            """cfr. http://flask.pocoo.org/docs/0.12/patterns/sqlalchemy/"""
            self.db.session.remove()

    @staticmethod
    def init_logging(loglevel: int = logging.WARNING) -> logging.Logger:
        """
        Specify the log format used in the webserver logs
        """
        log = logging.getLogger(__name__)
        if log.level == logging.NOTSET:
            handler = logging.StreamHandler(sys.stderr)
            formatter = logging.Formatter("[%(asctime)s] %(levelname)s: %(message)s")
            handler.setFormatter(formatter)
            log.setLevel(loglevel)
            log.addHandler(handler)
        return log


#
# DB and logging initialization
#
DB = SQLAlchemy()

try:
    DEBUG = os.getenv("DEBUG", logging.WARNING)
    LOGLEVEL = int(DEBUG)
except ValueError:  # pragma: no cover
    print(f'Invalid LogLevel in DEBUG Environment Variable! "{DEBUG}"')
    LOGLEVEL = logging.INFO

log = DYNAPI.init_logging(LOGLEVEL)
