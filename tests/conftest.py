import os

# Must be set before app/config are imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("FLASK_SECRET_KEY", "test-secret")

import pytest
import requests

from app import app as flask_app
from models import db, initialize_default_settings, update_setting


def make_response(status=200, body="", content_type="text/csv; charset=utf-8", headers=None, url=""):
    """Build a real requests.Response without touching the network."""
    resp = requests.Response()
    resp.status_code = status
    resp._content = body.encode("utf-8") if isinstance(body, str) else body
    resp.encoding = "utf-8"
    resp.url = url
    if content_type:
        resp.headers["Content-Type"] = content_type
    for k, v in (headers or {}).items():
        resp.headers[k] = v
    return resp


class FakeSheetSession:
    """Stand-in for requests.Session serving canned spreadsheet responses.

    ``routes`` maps ``(path_suffix, frozenset(params.items()))`` to a Response;
    anything else is a 404.
    """

    def __init__(self, routes=None, raise_for=()):
        self.routes = dict(routes or {})
        self.raise_for = tuple(raise_for)
        self.calls = []
        self.closed = False

    def get(self, url, params=None, timeout=None):
        params = dict(params or {})
        self.calls.append((url, params))
        for suffix in self.raise_for:
            if url.endswith(suffix):
                raise requests.ConnectionError(f"boom: {url}")
        for (suffix, wanted), resp in self.routes.items():
            if url.endswith(suffix) and wanted == frozenset(params.items()):
                return resp
        return make_response(404, "Not Found", content_type="text/html")

    def close(self):
        self.closed = True


def export_key(gid=None):
    params = {"format": "csv"}
    if gid is not None:
        params["gid"] = str(gid)
    return ("/export", frozenset(params.items()))


def gviz_key(name):
    return ("/gviz/tq", frozenset({"tqx": "out:csv", "sheet": name}.items()))


@pytest.fixture()
def app_ctx():
    flask_app.config["TESTING"] = True
    with flask_app.app_context():
        db.drop_all()
        db.create_all()
        initialize_default_settings()
        yield flask_app
        db.session.remove()


@pytest.fixture()
def client(app_ctx):
    return app_ctx.test_client()


@pytest.fixture()
def sheet_configured(app_ctx):
    update_setting("google_sheet_url", "https://docs.google.com/spreadsheets/d/XYZ/edit")
    return "XYZ"
