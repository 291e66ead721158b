import fnmatch
import logging
from types import SimpleNamespace

import pytest
from flask import Flask, request

import dynapi
from dynapi import DB, AuthUser, DynamicAPI, EntityRegistry, RequestContext, ResponseCache

from bookstore import DESCRIPTORS, seed


def _noop(*args, **kwargs) -> None:
    return None


def load_user():
    """
    The tests authenticate with the X-Roles header, eg. "X-Roles: editor,reviewer"
    """
    roles = request.headers.get("X-Roles")
    if roles is None:
        return None
    return AuthUser("tester", [role for role in roles.split(",") if role])


class MemoryRedis:
    """
    In memory stand-in for the redis client, only the commands used by ResponseCache
    """

    def __init__(self) -> None:
        self.store = {}
        self.ttls = {}

    def get(self, key):
        return self.store.get(key)

    def setex(self, key, ttl, value) -> None:
        self.store[key] = value
        self.ttls[key] = ttl

    def scan_iter(self, match="*"):
        return iter([key for key in self.store if fnmatch.fnmatchcase(key, match)])

    def delete(self, *keys) -> int:
        removed = [key for key in keys if self.store.pop(key, None) is not None]
        return len(removed)


@pytest.fixture(autouse=True)
def _quiet_log(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        dynapi,
        "log",
        SimpleNamespace(
            debug=_noop,
            info=_noop,
            warning=_noop,
            error=_noop,
            exception=_noop,
            critical=_noop,
            getEffectiveLevel=lambda: logging.WARNING,
        ),
        raising=False,
    )


@pytest.fixture(autouse=True)
def _fresh_config():
    dynapi.clear_config_cache()
    yield
    dynapi.clear_config_cache()


@pytest.fixture
def registry() -> EntityRegistry:
    result = EntityRegistry()
    for model, descriptor in DESCRIPTORS:
        result.register(model, descriptor)
    return result


@pytest.fixture
def context():
    """
    factory of request contexts, eg. context(output="complete", show_only=["name"])
    """

    def make(**args):
        return RequestContext.from_args(args, path="http://localhost/api/test")

    return make


@pytest.fixture
def app():
    app = Flask("dynapi_tests")
    app.config.update(SQLALCHEMY_DATABASE_URI="sqlite://", TESTING=True)
    DB.init_app(app)
    with app.app_context():
        DB.create_all()
        seed(DB.session)
        yield app
        DB.session.remove()
        DB.drop_all()


@pytest.fixture
def api(app) -> DynamicAPI:
    result = DynamicAPI(app, host="localhost", port=None, prefix="/api", user_loader=load_user)
    for model, descriptor in DESCRIPTORS:
        result.expose_object(model, descriptor)
    return result


@pytest.fixture
def client(app, api):
    return app.test_client()


@pytest.fixture
def execution(app, api):
    return api.execution


@pytest.fixture
def response_cache() -> ResponseCache:
    return ResponseCache(client=MemoryRedis(), timeout=60)
