import json
import os
import sys
from concurrent.futures import Executor, Future

import pytest
import requests

ROOT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

import gh_repo_dashboard as ghd  # noqa: E402


class InlineExecutor(Executor):
    """Runs each submitted call immediately on the calling thread."""

    def submit(self, fn, *args, **kwargs):
        future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except BaseException as exc:
            future.set_exception(exc)
        return future


class ManualExecutor(Executor):
    """Queues submitted calls until the test runs them, in any order."""

    def __init__(self):
        self.pending = []

    def submit(self, fn, *args, **kwargs):
        future = Future()
        self.pending.append((future, fn, args, kwargs))
        return future

    def run(self, index):
        future, fn, args, kwargs = self.pending.pop(index)
        try:
            future.set_result(fn(*args, **kwargs))
        except BaseException as exc:
            future.set_exception(exc)
        return future

    def run_all(self):
        while self.pending:
            self.run(0)


class FakeResponse:
    def __init__(self, status_code=200, payload=None, body=None):
        self.status_code = status_code
        if body is None:
            body = json.dumps(payload).encode('utf-8')
        self.content = body
        self.text = body.decode('utf-8', errors='replace')


class FakeSession:
    """Stands in for requests.Session; answers GETs from a URL -> response table."""

    def __init__(self, routes, calls, token, user_agent):
        self.routes = routes
        self.calls = calls
        self.token = token
        self.user_agent = user_agent
        self.closed = False

    def get(self, url, timeout=None):
        self.calls.append((url, timeout, self.token))
        answer = self.routes.get(url)
        if answer is None:
            return FakeResponse(404, {'message': 'Not Found'})
        if isinstance(answer, Exception):
            raise answer
        return answer

    def close(self):
        self.closed = True


class FakeGitHub:
    API = 'https://api.github.com'

    def __init__(self, org='navikt'):
        self.org = org
        self.routes = {}
        self.calls = []

    def pulls_url(self, repo):
        return f'{self.API}/repos/{self.org}/{repo}/pulls'

    def runs_url(self, repo):
        return f'{self.API}/repos/{self.org}/{repo}/actions/runs'

    def workflows_url(self, repo):
        return f'{self.API}/repos/{self.org}/{repo}/actions/workflows'

    def teams_url(self, page, per_page=100):
        return f'{self.API}/orgs/{self.org}/teams?per_page={per_page}&page={page}'

    def reply(self, url, payload=None, status=200, body=None):
        self.routes[url] = FakeResponse(status, payload, body)

    def fail(self, url, exc=None):
        self.routes[url] = exc or requests.ConnectionError('connection refused')

    def urls_called(self):
        return [c[0] for c in self.calls]

    def session(self, token, user_agent=ghd.DEFAULT_USER_AGENT):
        return FakeSession(self.routes, self.calls, token, user_agent)


@pytest.fixture
def fake_github(monkeypatch):
    gh = FakeGitHub()
    monkeypatch.setattr(ghd, '_session', gh.session)
    return gh


@pytest.fixture
def inline_executor():
    return InlineExecutor()


@pytest.fixture
def manual_executor():
    return ManualExecutor()


@pytest.fixture
def temp_state_path(tmp_path):
    """Return an isolated UI state path per test."""
    return tmp_path / "ui_state.json"


@pytest.fixture
def temp_token_path(tmp_path):
    return tmp_path / "token.json"
