"""Test configuration: project root on sys.path, fake HTTP objects, English strings.

No test talks to a real Ollama daemon; HTTP goes through the fakes below and
the only real socket use is a probe against a closed loopback port.
"""

import os
import sys

import pytest
import requests

# Add parent to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import i18n


class FakeResponse:
    """Minimal stand-in for requests.Response, streaming pre-split byte chunks."""

    def __init__(self, status_code=200, chunks=(), error=None):
        self.status_code = status_code
        self._chunks = list(chunks)
        self._error = error
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.closed = True
        return False

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error", response=self)

    def iter_content(self, chunk_size=1):
        for chunk in self._chunks:
            yield chunk
        if self._error is not None:
            raise self._error


class FakeHTTP:
    """Records requests and answers them from per-path queues or callables."""

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.calls = []

    def _answer(self, method, url, kwargs):
        self.calls.append((method, url, kwargs))
        path = "/" + url.split("/", 3)[3]
        answer = self.routes[(method, path)]
        if callable(answer):
            answer = answer()
        if isinstance(answer, Exception):
            raise answer
        return answer

    def get(self, url, **kwargs):
        return self._answer("GET", url, kwargs)

    def post(self, url, **kwargs):
        return self._answer("POST", url, kwargs)


@pytest.fixture
def fake_http():
    return FakeHTTP()


@pytest.fixture
def history_path(tmp_path):
    return tmp_path / "history" / "history.json"


@pytest.fixture(autouse=True)
def english_strings():
    i18n.init(locale_override="en")
    yield
