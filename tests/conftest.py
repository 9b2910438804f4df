import json
from urllib.parse import urlparse

import pytest
import requests

from bunqnodes.api.keys import generate_key_pair
from bunqnodes.logging_config import LogConfig


@pytest.fixture(autouse=True)
def _log_dir(tmp_path, monkeypatch):
    monkeypatch.setattr(LogConfig, "LOG_DIR", tmp_path / "logs")


@pytest.fixture(scope="session")
def key_pair():
    # one 2048-bit key for the whole run
    return generate_key_pair()


def make_response(status=200, body=None, raw=None):
    r = requests.Response()
    r.status_code = status
    if raw is not None:
        r._content = raw
    elif body is None:
        r._content = b""
    else:
        r._content = json.dumps(body).encode("utf-8")
    r.headers["Content-Type"] = "application/json"
    return r


def _maybe_json(data):
    if not data:
        return None
    try:
        return json.loads(data)
    except ValueError:
        return None


class FakeHttp:
    """Stands in for requests.Session; `responder(call)` returns a Response or raises."""

    def __init__(self, responder):
        self.responder = responder
        self.calls = []

    def request(self, method, url, params=None, data=None, headers=None, timeout=None):
        call = {
            "method": method,
            "url": url,
            "path": urlparse(url).path,
            "params": dict(params or {}),
            "data": data,
            "json": _maybe_json(data),
            "headers": dict(headers or {}),
            "timeout": timeout,
        }
        self.calls.append(call)
        return self.responder(call)

    def post(self, url, data=None, headers=None, timeout=None):
        call = {"method": "POST", "url": url, "form": dict(data or {}), "headers": dict(headers or {})}
        self.calls.append(call)
        return self.responder(call)

    def paths(self, method=None):
        return [c["path"] for c in self.calls if method is None or c["method"] == method]
