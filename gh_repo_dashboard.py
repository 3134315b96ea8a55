#!/usr/bin/env python3
# gh_repo_dashboard: Terminal dashboard for GitHub pull requests, workflow runs and teams
#
# Hotkeys
#   1  pull requests          2  workflow runs
#   3  workflows              4  teams
#   u  refresh the current view (runs in background, table fills in as repos answer)
#   U  refresh every view
#   j/k select a repository in the side list (filters the table to it)
#   *  clear the repository filter (show all tracked repositories)
#   A  add a repository to the tracked set
#   X  remove the selected repository (its cached results are dropped too)
#   T  set the GitHub token (typed masked)
#   r  toggle all runs / latest attempt per workflow
#   PageUp/PageDown scroll the table
#   ?  show key help in the status bar
#   q  quit (saves tracked repositories, UI state and token)
#
# Config highlights (YAML, optional)
#     org: navikt
#     repositories: [aap-api, aap-vedtak]
#     credential_store: env       # never write the token to disk
#
# Notes
# - Every refresh fans out one request per tracked repository; results land as they arrive.
# - A failed request or an unparseable response keeps the last known value for that repository.
# - Results from an older refresh never overwrite a newer one.
#
# Environment
# - GITHUB_TOKEN (scopes: repo, read:org)
# - MOCK_FETCH=1 (optional offline demo)

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
import threading
import unicodedata
from concurrent.futures import Executor, Future, ThreadPoolExecutor, wait as wait_futures
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Callable, Dict, Generic, Iterable, List, Mapping, Optional, Set, Tuple, TypeVar

import requests
import yaml
from prompt_toolkit import Application
from prompt_toolkit.filters import Condition
from prompt_toolkit.key_binding import KeyBindings
from prompt_toolkit.keys import Keys
from prompt_toolkit.layout import HSplit, VSplit, Layout, Window
from prompt_toolkit.layout.controls import FormattedTextControl
from prompt_toolkit.styles import Style
from prompt_toolkit.utils import get_cwidth
import logging
from logging.handlers import RotatingFileHandler


# -----------------------------
# Errors
# -----------------------------
class DashboardError(Exception):
    """Base class for everything the fetch pipeline raises."""


class TransportError(DashboardError):
    """Network, DNS or TLS failure, or a non-2xx answer."""

    def __init__(self, url: str, message: str, status: Optional[int] = None):
        super().__init__(f"{message} ({url})")
        self.url = url
        self.status = status


class DecodeError(DashboardError):
    """Response body is not JSON or does not have the expected shape."""


class ConfigError(DashboardError, ValueError):
    pass


# -----------------------------
# Config models
# -----------------------------
DEFAULT_ORG = "navikt"
DEFAULT_REPOSITORIES = [
    "aap-andre-ytelser", "aap-api", "aap-bot", "aap-devtools", "aap-inntekt",
    "aap-libs", "aap-meldeplikt", "aap-oppgavestyring", "aap-personopplysninger",
    "aap-sink", "aap-sykepengedager", "aap-utbetaling", "aap-vedtak",
]
DEFAULT_API_URL = "https://api.github.com"
DEFAULT_USER_AGENT = "gh-repo-dashboard"
CREDENTIAL_STORES = ("plaintext", "env")


@dataclass
class Config:
    org: str = DEFAULT_ORG
    repositories: List[str] = field(default_factory=lambda: list(DEFAULT_REPOSITORIES))
    api_url: str = DEFAULT_API_URL
    user_agent: str = DEFAULT_USER_AGENT
    timeout: float = 30.0
    max_workers: int = 16
    team_pages: int = 3
    team_page_size: int = 100
    credential_store: str = "plaintext"


def _unique_names(raw: Iterable[object]) -> List[str]:
    out: List[str] = []
    for item in raw:
        name = str(item or "").strip()
        if name and name not in out:
            out.append(name)
    return out


def load_config(path: Optional[str]) -> Config:
    """Read the YAML config; without a path the built-in defaults are used."""
    if not path:
        return Config()
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Config: unable to read {path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError("Config: top level must be a mapping.")
    org = str(raw.get("org") or "").strip()
    if not org:
        raise ConfigError("Config: 'org' is required.")
    repos_raw = raw.get("repositories")
    if repos_raw is None:
        repos = list(DEFAULT_REPOSITORIES)
    elif isinstance(repos_raw, list):
        repos = _unique_names(repos_raw)
    else:
        raise ConfigError("Config: 'repositories' must be a list.")
    store = str(raw.get("credential_store") or "plaintext").strip().lower()
    if store not in CREDENTIAL_STORES:
        raise ConfigError(f"Config: 'credential_store' must be one of {', '.join(CREDENTIAL_STORES)}.")
    try:
        timeout = float(raw.get("timeout", 30))
        max_workers = int(raw.get("max_workers", 16))
        team_pages = int(raw.get("team_pages", 3))
        team_page_size = int(raw.get("team_page_size", 100))
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Config: invalid numeric option: {exc}") from exc
    if timeout <= 0 or max_workers < 1 or team_pages < 1 or team_page_size < 1:
        raise ConfigError("Config: timeout, max_workers, team_pages and team_page_size must be positive.")
    return Config(
        org=org,
        repositories=repos,
        api_url=str(raw.get("api_url") or DEFAULT_API_URL).rstrip("/"),
        user_agent=str(raw.get("user_agent") or DEFAULT_USER_AGENT),
        timeout=timeout,
        max_workers=max_workers,
        team_pages=team_pages,
        team_page_size=team_page_size,
        credential_store=store,
    )


# -----------------------------
# Models
# -----------------------------
def _require_int(item: Dict[str, object], key: str, what: str) -> int:
    val = item.get(key)
    if isinstance(val, bool) or not isinstance(val, int):
        raise DecodeError(f"{what}: '{key}' must be an integer, got {val!r}")
    return val


def _require_str(item: Dict[str, object], key: str, what: str) -> str:
    val = item.get(key)
    if not isinstance(val, str):
        raise DecodeError(f"{what}: '{key}' must be a string, got {val!r}")
    return val


def _opt_str(item: Dict[str, object], key: str, what: str) -> Optional[str]:
    val = item.get(key)
    if val is None or isinstance(val, str):
        return val
    raise DecodeError(f"{what}: '{key}' must be a string or null, got {val!r}")


def _opt_int(item: Dict[str, object], key: str, what: str) -> Optional[int]:
    if item.get(key) is None:
        return None
    return _require_int(item, key, what)


def _as_object(item: object, what: str) -> Dict[str, object]:
    if not isinstance(item, dict):
        raise DecodeError(f"{what}: expected an object, got {type(item).__name__}")
    return item


@dataclass(frozen=True)
class PullRequest:
    id: int
    number: int
    title: Optional[str] = None
    user_login: Optional[str] = None
    html_url: Optional[str] = None
    updated_at: Optional[str] = None
    state: Optional[str] = None
    created_at: Optional[str] = None

    @classmethod
    def from_json(cls, raw: object) -> "PullRequest":
        item = _as_object(raw, "pull request")
        user = item.get("user")
        login: Optional[str] = None
        if user is not None:
            login = _opt_str(_as_object(user, "pull request user"), "login", "pull request user")
        return cls(
            id=_require_int(item, "id", "pull request"),
            number=_require_int(item, "number", "pull request"),
            title=_opt_str(item, "title", "pull request"),
            user_login=login,
            html_url=_opt_str(item, "html_url", "pull request"),
            updated_at=_opt_str(item, "updated_at", "pull request"),
            state=_opt_str(item, "state", "pull request"),
            created_at=_opt_str(item, "created_at", "pull request"),
        )

    def to_json(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "number": self.number,
            "title": self.title,
            "user": {"login": self.user_login} if self.user_login is not None else None,
            "html_url": self.html_url,
            "updated_at": self.updated_at,
            "state": self.state,
            "created_at": self.created_at,
        }

    # Display fallbacks
    @property
    def author(self) -> str:
        return self.user_login or "unknown"

    @property
    def display_title(self) -> str:
        return self.title or "---"

    @property
    def updated(self) -> str:
        return self.updated_at or "---"

    @property
    def url(self) -> str:
        return self.html_url or "---"


@dataclass(frozen=True)
class WorkflowRun:
    id: int
    workflow_id: int
    run_attempt: int
    name: Optional[str] = None
    status: Optional[str] = None
    conclusion: Optional[str] = None
    run_started_at: Optional[str] = None
    event: Optional[str] = None
    run_number: Optional[int] = None
    html_url: Optional[str] = None
    display_title: Optional[str] = None

    @classmethod
    def from_json(cls, raw: object) -> "WorkflowRun":
        item = _as_object(raw, "workflow run")
        what = "workflow run"
        return cls(
            id=_require_int(item, "id", what),
            workflow_id=_require_int(item, "workflow_id", what),
            run_attempt=_require_int(item, "run_attempt", what),
            name=_opt_str(item, "name", what),
            status=_opt_str(item, "status", what),
            conclusion=_opt_str(item, "conclusion", what),
            run_started_at=_opt_str(item, "run_started_at", what),
            event=_opt_str(item, "event", what),
            run_number=_opt_int(item, "run_number", what),
            html_url=_opt_str(item, "html_url", what),
            display_title=_opt_str(item, "display_title", what),
        )


def _run_order_key(run: WorkflowRun) -> Tuple[str, int, int]:
    return (run.run_started_at or "", run.run_attempt, run.id)


@dataclass(frozen=True)
class WorkflowRuns:
    total_count: int = 0
    workflow_runs: Tuple[WorkflowRun, ...] = ()

    def latest_by_workflow(self) -> Tuple[WorkflowRun, ...]:
        """One run per workflow id: the most recently started attempt."""
        latest: Dict[int, WorkflowRun] = {}
        for run in self.workflow_runs:
            current = latest.get(run.workflow_id)
            if current is None or _run_order_key(run) > _run_order_key(current):
                latest[run.workflow_id] = run
        return tuple(sorted(latest.values(), key=lambda r: ((r.name or "").lower(), r.workflow_id)))


@dataclass(frozen=True)
class Workflow:
    id: int
    name: str
    path: str
    state: str

    @classmethod
    def from_json(cls, raw: object) -> "Workflow":
        item = _as_object(raw, "workflow")
        return cls(
            id=_require_int(item, "id", "workflow"),
            name=_require_str(item, "name", "workflow"),
            path=_require_str(item, "path", "workflow"),
            state=_require_str(item, "state", "workflow"),
        )


@dataclass(frozen=True)
class Team:
    id: int
    name: str
    slug: str
    description: Optional[str] = None
    privacy: Optional[str] = None

    @classmethod
    def from_json(cls, raw: object) -> "Team":
        item = _as_object(raw, "team")
        return cls(
            id=_require_int(item, "id", "team"),
            name=_require_str(item, "name", "team"),
            slug=_require_str(item, "slug", "team"),
            description=_opt_str(item, "description", "team"),
            privacy=_opt_str(item, "privacy", "team"),
        )


# -----------------------------
# Decoding
# -----------------------------
T = TypeVar("T")
V = TypeVar("V")


def _parse_json(body: bytes, what: str) -> object:
    try:
        return json.loads(body)
    except ValueError as exc:
        raise DecodeError(f"{what}: malformed JSON: {exc}") from exc


@dataclass(frozen=True)
class DataOrEmpty(Generic[T]):
    """A list payload, or the bare ``{}`` GitHub sometimes sends instead of ``[]``."""

    data: Tuple[T, ...] = ()
    is_empty: bool = False

    @classmethod
    def decode(cls, payload: object, decode_item: Callable[[object], T], what: str) -> "DataOrEmpty[T]":
        if isinstance(payload, list):
            return cls(data=tuple(decode_item(item) for item in payload))
        if isinstance(payload, dict) and not payload:
            return cls(is_empty=True)
        raise DecodeError(f"{what}: expected a list or {{}}, got {type(payload).__name__}")

    def items(self) -> Tuple[T, ...]:
        return () if self.is_empty else self.data


def decode_pull_requests(body: bytes) -> Tuple[PullRequest, ...]:
    payload = _parse_json(body, "pull requests")
    return DataOrEmpty.decode(payload, PullRequest.from_json, "pull requests").items()


def decode_workflow_runs(body: bytes) -> WorkflowRuns:
    payload = _as_object(_parse_json(body, "workflow runs"), "workflow runs")
    runs_raw = payload.get("workflow_runs")
    if not isinstance(runs_raw, list):
        raise DecodeError("workflow runs: 'workflow_runs' must be a list")
    return WorkflowRuns(
        total_count=_require_int(payload, "total_count", "workflow runs"),
        workflow_runs=tuple(WorkflowRun.from_json(item) for item in runs_raw),
    )


def decode_workflows(body: bytes) -> Tuple[Workflow, ...]:
    payload = _as_object(_parse_json(body, "workflows"), "workflows")
    items = payload.get("workflows")
    if not isinstance(items, list):
        raise DecodeError("workflows: 'workflows' must be a list")
    return tuple(Workflow.from_json(item) for item in items)


def decode_teams_page(body: bytes) -> Tuple[Team, ...]:
    payload = _parse_json(body, "teams")
    return DataOrEmpty.decode(payload, Team.from_json, "teams").items()


# -----------------------------
# Transport
# -----------------------------
def _session(token: str, user_agent: str = DEFAULT_USER_AGENT) -> requests.Session:
    s = requests.Session()
    s.headers["Authorization"] = f"Bearer {(token or '').strip()}"
    s.headers["Accept"] = "application/vnd.github+json"
    s.headers["User-Agent"] = user_agent
    return s


class Transport:
    """Runs authenticated GETs on an executor; each completion callback fires exactly once."""

    def __init__(self, executor: Executor, user_agent: str = DEFAULT_USER_AGENT, timeout: float = 30.0):
        self._executor = executor
        self._user_agent = user_agent
        self._timeout = timeout

    def _get(self, url: str, token: str) -> bytes:
        session = _session(token, self._user_agent)
        try:
            try:
                resp = session.get(url, timeout=self._timeout)
            except requests.RequestException as exc:
                raise TransportError(url, f"request failed: {exc}") from exc
            if resp.status_code < 200 or resp.status_code >= 300:
                raise TransportError(url, f"HTTP {resp.status_code}: {resp.text[:200]}", status=resp.status_code)
            return resp.content
        finally:
            session.close()

    def fetch(self, url: str, token: str, callback: Callable[[Future], None]) -> Future:
        future = self._executor.submit(self._get, url, token)
        future.add_done_callback(callback)
        return future


def _future_body(future: Future, label: str) -> Optional[bytes]:
    """Return the fetched body, or log why there is none."""
    exc = future.exception()
    if exc is None:
        return future.result()
    if isinstance(exc, TransportError):
        logging.getLogger('gh_repo_dashboard').warning("Fetch failed for %s: %s", label, exc)
    else:
        logging.getLogger('gh_repo_dashboard').error(
            "Unexpected error fetching %s", label, exc_info=(type(exc), exc, exc.__traceback__))
    return None


# -----------------------------
# Fetchers
# -----------------------------
PULLS_URL = "{api}/repos/{org}/{repo}/pulls"
RUNS_URL = "{api}/repos/{org}/{repo}/actions/runs"
WORKFLOWS_URL = "{api}/repos/{org}/{repo}/actions/workflows"
TEAMS_URL = "{api}/orgs/{org}/teams?per_page={per_page}&page={page}"


class GitHubApi:
    def __init__(self, transport: Transport, org: str, api_url: str = DEFAULT_API_URL):
        self.transport = transport
        self.org = org
        self.api_url = api_url.rstrip("/")

    def url(self, template: str, **params: object) -> str:
        return template.format(api=self.api_url, org=self.org, **params)

    def pull_requests(self, token: str, repo: str, on_complete: Callable[[Tuple[PullRequest, ...]], None],
                      on_error: Optional[Callable[[Exception], None]] = None) -> Future:
        return self._fetch_decoded(token, self.url(PULLS_URL, repo=repo), decode_pull_requests,
                                   on_complete, on_error, f"pulls {self.org}/{repo}")

    def runs(self, token: str, repo: str, on_complete: Callable[[WorkflowRuns], None],
             on_error: Optional[Callable[[Exception], None]] = None) -> Future:
        return self._fetch_decoded(token, self.url(RUNS_URL, repo=repo), decode_workflow_runs,
                                   on_complete, on_error, f"runs {self.org}/{repo}")

    def workflows(self, token: str, repo: str, on_complete: Callable[[Tuple[Workflow, ...]], None],
                  on_error: Optional[Callable[[Exception], None]] = None) -> Future:
        return self._fetch_decoded(token, self.url(WORKFLOWS_URL, repo=repo), decode_workflows,
                                   on_complete, on_error, f"workflows {self.org}/{repo}")

    def teams_page(self, token: str, page: int, per_page: int,
                   on_page: Callable[[int, Optional[bytes]], None]) -> Future:
        """Fetch one raw page of org teams; ``on_page`` gets ``None`` when the request failed."""
        label = f"teams {self.org} page {page}"

        def _done(future: Future) -> None:
            body = _future_body(future, label)
            try:
                on_page(page, body)
            except Exception:
                logging.getLogger('gh_repo_dashboard').exception("Completion handler failed for %s", label)

        url = self.url(TEAMS_URL, per_page=per_page, page=page)
        return self.transport.fetch(url, token, _done)

    def _fetch_decoded(self, token: str, url: str, decode: Callable[[bytes], V],
                       on_complete: Callable[[V], None],
                       on_error: Optional[Callable[[Exception], None]], label: str) -> Future:
        logger = logging.getLogger('gh_repo_dashboard')

        def _report(exc: Exception) -> None:
            if on_error is None:
                return
            try:
                on_error(exc)
            except Exception:
                logger.exception("Error handler failed for %s", label)

        def _done(future: Future) -> None:
            body = _future_body(future, label)
            if body is None:
                _report(future.exception())
                return
            try:
                value = decode(body)
            except DecodeError as exc:
                logger.warning("Dropping %s: %s", label, exc)
                logger.debug("Undecodable body for %s: %r", label, body[:500])
                _report(exc)
                return
            try:
                on_complete(value)
            except Exception:
                logger.exception("Completion handler failed for %s", label)

        return self.transport.fetch(url, token, _done)


# -----------------------------
# Aggregator
# -----------------------------
class ResultMap(Generic[V]):
    """Keyed results written by fetch completions and read by the UI as snapshots.

    Upserts replace the whole value for a key under one short lock. Each value
    can carry the generation of the refresh that produced it; a value older than
    the last one accepted for its key is discarded.
    """

    def __init__(self, name: str = ""):
        self.name = name
        self._lock = threading.Lock()
        self._data: Dict[str, V] = {}
        self._generations: Dict[str, int] = {}
        self._generation = 0

    def next_generation(self) -> int:
        with self._lock:
            self._generation += 1
            return self._generation

    def ensure(self, key: str, default: V) -> None:
        with self._lock:
            self._data.setdefault(key, default)

    def upsert(self, key: str, value: V, generation: Optional[int] = None) -> bool:
        with self._lock:
            if generation is not None:
                if generation < self._generations.get(key, 0):
                    return False
                self._generations[key] = generation
            self._data[key] = value
            return True

    def remove(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)
            # Anything already in flight for this key is now stale.
            self._generations[key] = self._generation + 1

    def get(self, key: str, default: Optional[V] = None) -> Optional[V]:
        with self._lock:
            return self._data.get(key, default)

    def keys(self) -> List[str]:
        with self._lock:
            return sorted(self._data)

    def snapshot(self) -> Mapping[str, V]:
        with self._lock:
            items = sorted(self._data.items())
        return MappingProxyType(dict(items))

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


# -----------------------------
# Team pagination
# -----------------------------
class TeamPager:
    """Fetches a fixed number of team pages and publishes the flattened list.

    Flattening runs right after the pages are issued and again as each page
    lands, so readers may see 0..N pages' worth of teams while it drains.
    """

    IDLE = "idle"
    REQUESTING = "requesting"
    DRAINING = "draining"
    FLATTENED = "flattened"

    def __init__(self, api: GitHubApi, store: ResultMap, token: str, generation: int,
                 pages: int = 3, per_page: int = 100):
        self._api = api
        self._store = store
        self._token = token
        self._generation = generation
        self._pages = pages
        self._per_page = per_page
        self._lock = threading.Lock()
        self._raw_pages: Dict[int, bytes] = {}
        self._decoded: Dict[int, Tuple[Team, ...]] = {}
        self._outstanding: Set[int] = set()
        self.state = TeamPager.IDLE
        self.failures = 0

    @property
    def key(self) -> str:
        return self._api.org

    def start(self) -> List[Future]:
        with self._lock:
            if self.state != TeamPager.IDLE:
                raise RuntimeError("TeamPager.start() called twice")
            self.state = TeamPager.REQUESTING
            self._outstanding = set(range(1, self._pages + 1))
        futures = [
            self._api.teams_page(self._token, page, self._per_page, self._on_page)
            for page in range(1, self._pages + 1)
        ]
        with self._lock:
            # No barrier here: publish whatever pages have landed so far.
            self._publish_locked()
            self.state = TeamPager.DRAINING if self._outstanding else TeamPager.FLATTENED
        return futures

    def _on_page(self, page: int, body: Optional[bytes]) -> None:
        with self._lock:
            if body is None:
                self.failures += 1
            else:
                self._raw_pages[page] = body
            self._outstanding.discard(page)
            self._publish_locked()
            if not self._outstanding and self.state == TeamPager.DRAINING:
                self.state = TeamPager.FLATTENED

    def _publish_locked(self) -> None:
        teams: List[Team] = []
        for page in sorted(self._raw_pages):
            if page not in self._decoded:
                try:
                    self._decoded[page] = decode_teams_page(self._raw_pages[page])
                except DecodeError as exc:
                    logging.getLogger('gh_repo_dashboard').warning("Team page %d dropped: %s", page, exc)
                    self._decoded[page] = ()
                    self.failures += 1
            teams.extend(self._decoded[page])
        self._store.upsert(self.key, tuple(teams), generation=self._generation)

    def pages_received(self) -> List[int]:
        with self._lock:
            return sorted(self._raw_pages)


# -----------------------------
# Refresh driver
# -----------------------------
KIND_PULLS = "pulls"
KIND_RUNS = "runs"
KIND_WORKFLOWS = "workflows"
KIND_TEAMS = "teams"
KINDS = (KIND_PULLS, KIND_RUNS, KIND_WORKFLOWS, KIND_TEAMS)
REPO_KINDS = (KIND_PULLS, KIND_RUNS, KIND_WORKFLOWS)
KIND_LABELS = {
    KIND_PULLS: "Pull requests",
    KIND_RUNS: "Workflow runs",
    KIND_WORKFLOWS: "Workflows",
    KIND_TEAMS: "Teams",
}


def _empty_value(kind: str) -> object:
    if kind == KIND_RUNS:
        return WorkflowRuns()
    return ()


class RepositorySet:
    """Ordered, unique repository names. Written only from the UI thread."""

    def __init__(self, names: Iterable[str] = (), purge: Iterable[ResultMap] = ()):
        self._names: List[str] = []
        self._purge = list(purge)
        for name in names:
            self.add(name)

    def add(self, name: str) -> bool:
        name = (name or "").strip()
        if not name or name in self._names:
            return False
        self._names.append(name)
        return True

    def remove(self, name: str) -> bool:
        if name not in self._names:
            return False
        self._names.remove(name)
        for store in self._purge:
            store.remove(name)
        return True

    def names(self) -> List[str]:
        return list(self._names)

    def __contains__(self, name: object) -> bool:
        return name in self._names

    def __len__(self) -> int:
        return len(self._names)

    def __iter__(self):
        return iter(list(self._names))


class RefreshDriver:
    def __init__(self, api: GitHubApi, repos: RepositorySet, stores: Dict[str, ResultMap],
                 credential: Callable[[], str], team_pages: int = 3, team_page_size: int = 100):
        self._api = api
        self._repos = repos
        self._stores = stores
        self._credential = credential
        self._team_pages = team_pages
        self._team_page_size = team_page_size
        self._lock = threading.Lock()
        self._current: Dict[str, int] = {kind: 0 for kind in KINDS}
        self._failures: Dict[str, int] = {kind: 0 for kind in KINDS}
        self.team_pager: Optional[TeamPager] = None

    def trigger(self, kind: str) -> List[Future]:
        """Start one refresh of ``kind``; returns the futures of the issued requests."""
        if kind not in KINDS:
            raise ValueError(f"Unknown resource kind: {kind!r}")
        logger = logging.getLogger('gh_repo_dashboard')
        store = self._stores[kind]
        generation = store.next_generation()
        with self._lock:
            self._current[kind] = generation
            self._failures[kind] = 0
        token = (self._credential() or "").strip()
        if not token:
            logger.warning("No GitHub token set; %s requests go out unauthenticated", kind)
        if kind == KIND_TEAMS:
            logger.info("Refreshing teams for %s (%d pages, generation %d)", self._api.org, self._team_pages, generation)
            pager = TeamPager(self._api, store, token, generation, self._team_pages, self._team_page_size)
            self.team_pager = pager
            return pager.start()

        repos = self._repos.names()
        logger.info("Refreshing %s for %d repositories (generation %d)", kind, len(repos), generation)
        fetch = {
            KIND_PULLS: self._api.pull_requests,
            KIND_RUNS: self._api.runs,
            KIND_WORKFLOWS: self._api.workflows,
        }[kind]
        futures: List[Future] = []
        for repo in repos:
            store.ensure(repo, _empty_value(kind))
            futures.append(fetch(token, repo,
                                 self._completion(kind, store, repo, generation),
                                 self._failure(kind, generation)))
        return futures

    def _completion(self, kind: str, store: ResultMap, repo: str, generation: int) -> Callable[[object], None]:
        def _apply(value: object) -> None:
            if not store.upsert(repo, value, generation=generation):
                logging.getLogger('gh_repo_dashboard').debug(
                    "Discarded superseded %s result for %s (generation %d)", kind, repo, generation)
        return _apply

    def _failure(self, kind: str, generation: int) -> Callable[[Exception], None]:
        def _count(_exc: Exception) -> None:
            with self._lock:
                if self._current[kind] == generation:
                    self._failures[kind] += 1
        return _count

    def failures(self, kind: str) -> int:
        if kind == KIND_TEAMS:
            pager = self.team_pager
            return pager.failures if pager is not None else 0
        with self._lock:
            return self._failures.get(kind, 0)


# -----------------------------
# Dashboard facade
# -----------------------------
class Dashboard:
    """Wires config, token, transport, stores and the refresh driver together."""

    def __init__(self, cfg: Config, token: str = "", executor: Optional[Executor] = None):
        self.cfg = cfg
        self.token = (token or "").strip()
        self._owns_executor = executor is None
        self.executor = executor or ThreadPoolExecutor(max_workers=cfg.max_workers, thread_name_prefix="gh-fetch")
        self.stores: Dict[str, ResultMap] = {kind: ResultMap(kind) for kind in KINDS}
        self.repos = RepositorySet(cfg.repositories, purge=[self.stores[k] for k in REPO_KINDS])
        self.api = GitHubApi(Transport(self.executor, cfg.user_agent, cfg.timeout), cfg.org, cfg.api_url)
        self.driver = RefreshDriver(self.api, self.repos, self.stores, lambda: self.token,
                                    team_pages=cfg.team_pages, team_page_size=cfg.team_page_size)

    def set_token(self, token: str) -> None:
        self.token = (token or "").strip()

    def snapshot(self, kind: str) -> Mapping[str, object]:
        if kind not in self.stores:
            raise ValueError(f"Unknown resource kind: {kind!r}")
        return self.stores[kind].snapshot()

    def trigger(self, kind: str) -> List[Future]:
        return self.driver.trigger(kind)

    def trigger_all(self) -> List[Future]:
        futures: List[Future] = []
        for kind in KINDS:
            futures.extend(self.trigger(kind))
        return futures

    def add_repository(self, name: str) -> bool:
        return self.repos.add(name)

    def remove_repository(self, name: str) -> bool:
        return self.repos.remove(name)

    def repositories(self) -> List[str]:
        return self.repos.names()

    def load_mock_results(self) -> None:
        generate_mock_results(self)

    def close(self, wait: bool = False, cancel: bool = False) -> None:
        """Shut the worker pool down; ``cancel`` drops requests that have not started yet."""
        if self._owns_executor:
            self.executor.shutdown(wait=wait, cancel_futures=cancel)


# -----------------------------
# Persisted state
# -----------------------------
UI_STATE_PATH = os.path.expanduser("~/.gh_repo_dashboard.ui.json")
TOKEN_PATH = os.path.expanduser("~/.gh_repo_dashboard.token.json")


@dataclass
class UiState:
    repositories: Optional[List[str]] = None
    view: str = KIND_PULLS
    current_index: int = 0
    show_all_runs: bool = False


class UiStateStore:
    """JSON file with the tracked repositories and UI preferences.

    Missing or malformed fields fall back to their defaults, so files written by
    older versions keep loading.
    """

    def __init__(self, path: str = UI_STATE_PATH):
        self.path = path

    def load(self) -> UiState:
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                raw = json.load(f)
        except FileNotFoundError:
            return UiState()
        except (OSError, ValueError) as exc:
            logging.getLogger('gh_repo_dashboard').warning("Ignoring unreadable UI state %s: %s", self.path, exc)
            return UiState()
        if not isinstance(raw, dict):
            return UiState()
        state = UiState()
        repos = raw.get('repositories')
        if isinstance(repos, list):
            state.repositories = _unique_names(repos)
        view = raw.get('view')
        if view in KINDS:
            state.view = view
        try:
            state.current_index = max(0, int(raw.get('current_index', 0) or 0))
        except (TypeError, ValueError):
            state.current_index = 0
        state.show_all_runs = bool(raw.get('show_all_runs', False))
        return state

    def save(self, state: UiState) -> None:
        data = {
            'repositories': state.repositories or [],
            'view': state.view,
            'current_index': state.current_index,
            'show_all_runs': state.show_all_runs,
        }
        try:
            d = os.path.dirname(self.path)
            if d and not os.path.isdir(d):
                os.makedirs(d, exist_ok=True)
            with open(self.path, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2)
        except OSError as exc:
            logging.getLogger('gh_repo_dashboard').warning("Unable to write UI state %s: %s", self.path, exc)


class CredentialStore:
    """Where the GitHub token is kept between runs."""

    def load(self) -> Optional[str]:
        raise NotImplementedError

    def save(self, token: str) -> None:
        raise NotImplementedError


class PlaintextCredentialStore(CredentialStore):
    """Token in a cleartext JSON file (mode 0600). Not a secret store."""

    def __init__(self, path: Optional[str] = None):
        self.path = path or TOKEN_PATH

    def load(self) -> Optional[str]:
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                raw = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            logging.getLogger('gh_repo_dashboard').warning("Ignoring unreadable token file %s: %s", self.path, exc)
            return None
        token = raw.get('token') if isinstance(raw, dict) else None
        if not isinstance(token, str):
            return None
        return token.strip() or None

    def save(self, token: str) -> None:
        try:
            d = os.path.dirname(self.path)
            if d and not os.path.isdir(d):
                os.makedirs(d, exist_ok=True)
            fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump({'token': (token or '').strip()}, f)
        except OSError as exc:
            logging.getLogger('gh_repo_dashboard').warning("Unable to write token file %s: %s", self.path, exc)


class EnvCredentialStore(CredentialStore):
    """Reads GITHUB_TOKEN (or .env); never writes anything."""

    def load(self) -> Optional[str]:
        return os.environ.get("GITHUB_TOKEN") or load_dotenv_token()

    def save(self, token: str) -> None:
        logging.getLogger('gh_repo_dashboard').debug("Token not persisted (credential_store: env)")


def make_credential_store(cfg: Config, path: Optional[str] = None) -> CredentialStore:
    if cfg.credential_store == "env":
        return EnvCredentialStore()
    return PlaintextCredentialStore(path)


def load_dotenv_token() -> Optional[str]:
    """Load TOKEN or GITHUB_TOKEN from a .env file (current dir or script dir) if present."""
    candidates = [os.getcwd(), os.path.dirname(os.path.abspath(__file__))]
    for base in candidates:
        path = os.path.join(base, ".env")
        if not os.path.isfile(path):
            continue
        try:
            with open(path, "r", encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if not line or line.startswith('#') or '=' not in line:
                        continue
                    k, v = line.split('=', 1)
                    k = k.strip()
                    v = v.strip().strip('"').strip("'")
                    if k in ("TOKEN", "GITHUB_TOKEN") and v:
                        os.environ.setdefault("GITHUB_TOKEN", v)
                        return v
        except OSError:
            continue
    return None


# -----------------------------
# Logging
# -----------------------------
def configure_logging(log_level: str = 'ERROR', log_path: Optional[str] = None) -> logging.Logger:
    if log_path is None:
        log_path = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'gh_repo_dashboard.log')
    logger = logging.getLogger('gh_repo_dashboard')
    # Reset handlers so --log-level reliably controls file output.
    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()
    # Logger stays at DEBUG; the handler filters by the requested level.
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    fh = RotatingFileHandler(log_path, maxBytes=2000000, backupCount=2, encoding='utf-8')
    lvl = getattr(logging, str(log_level).upper(), None)
    fh.setLevel(lvl if isinstance(lvl, int) else logging.ERROR)
    fh.setFormatter(logging.Formatter('%(asctime)s %(levelname)s %(message)s'))
    logger.addHandler(fh)
    return logger


# -----------------------------
# UI helpers (fragments only)
# -----------------------------
BASE_STYLE: Dict[str, str] = {
    'table.header': 'bold #ffd75f',
    'table.repo': 'bold #87d7ff',
    'table.muted': 'ansigray',
    'run.success': '#87ff5f',
    'run.failure': '#ff8787',
    'run.active': '#ffd75f',
    'run.other': '#d0d0d0',
    'sidebar': 'bg:#1c1c1c #f0f0f0',
    'sidebar.title': 'bold #ffd75f',
    'sidebar.cursor': 'reverse',
    'status': 'reverse',
    'input': 'bold #ffffff bg:#303030',
}

FAILED_CONCLUSIONS = ("failure", "timed_out", "startup_failure", "action_required")


def style_for_run(run: WorkflowRun) -> str:
    if run.status and run.status != "completed":
        return "class:run.active"
    conclusion = (run.conclusion or "").lower()
    if conclusion == "success":
        return "class:run.success"
    if conclusion in FAILED_CONCLUSIONS:
        return "class:run.failure"
    return "class:run.other"


def style_for_state(state: Optional[str]) -> str:
    norm = (state or "").lower()
    if norm in ("active", "open"):
        return "class:run.success"
    if norm.startswith("disabled") or norm == "closed":
        return "class:run.failure"
    return "class:run.other"


def _char_width(ch: str) -> int:
    """Return printable cell width for a single character."""
    if unicodedata.combining(ch) or unicodedata.category(ch) == "Cf":
        return 0
    width = get_cwidth(ch)
    if width <= 0:
        return 2 if unicodedata.east_asian_width(ch) in ("W", "F") else 1
    return width


def _display_width(text: str) -> int:
    return sum(_char_width(ch) for ch in text)


def _sanitize_cell_text(s: Optional[str]) -> str:
    return (s or "").replace("\n", " ").replace("\r", " ")


def _truncate(s: str, maxlen: int) -> str:
    """Truncate string to a maximum display width, preserving whole glyphs."""
    s = _sanitize_cell_text(s)
    if maxlen <= 0:
        return ""
    if _display_width(s) <= maxlen:
        return s
    ellipsis = "…"
    ell_w = _display_width(ellipsis)
    out: List[str] = []
    width = 0
    for ch in s:
        ch_w = _char_width(ch)
        if width + ch_w + ell_w > maxlen:
            break
        out.append(ch)
        width += ch_w
    if out:
        return "".join(out) + ellipsis
    return ellipsis if maxlen >= ell_w else ""


def _pad_display(text: Optional[str], width: int, align: str = "left") -> str:
    """Pad/truncate text to an exact display width using spaces."""
    raw = _truncate(_sanitize_cell_text(text), width)
    pad = max(0, width - _display_width(raw))
    if align == "right":
        return " " * pad + raw
    return raw + " " * pad


def _empty_fragments(what: str) -> List[Tuple[str, str]]:
    return [("bold", f"No {what} yet."), ("", " Press "), ("bold", "u"), ("", " to fetch.")]


def _finish(frags: List[Tuple[str, str]]) -> List[Tuple[str, str]]:
    if frags and frags[-1] == ("", "\n"):
        frags.pop()
    return frags


def build_pulls_fragments(snapshot: Mapping[str, Tuple[PullRequest, ...]]) -> List[Tuple[str, str]]:
    """Return a list of (style, text) tuples for FormattedTextControl."""
    if not snapshot:
        return _empty_fragments("pull requests")
    frags: List[Tuple[str, str]] = []
    header = (f"{_pad_display('#', 6, 'right')}  {_pad_display('Title', 50)}  "
              f"{_pad_display('Author', 18)}  {_pad_display('Updated', 20)}  URL")
    for repo, pulls in snapshot.items():
        frags.append(("class:table.repo", f"## {repo} ({len(pulls)})"))
        frags.append(("", "\n"))
        if not pulls:
            frags.append(("class:table.muted", "   (no open pull requests)"))
            frags.append(("", "\n"))
            continue
        frags.append(("class:table.header", header))
        frags.append(("", "\n"))
        for pr in pulls:
            frags.append(("", f"{_pad_display(str(pr.number), 6, 'right')}  {_pad_display(pr.display_title, 50)}  "
                              f"{_pad_display(pr.author, 18)}  {_pad_display(pr.updated, 20)}  {pr.url}"))
            frags.append(("", "\n"))
    return _finish(frags)


def build_runs_fragments(snapshot: Mapping[str, WorkflowRuns], show_all: bool = False) -> List[Tuple[str, str]]:
    if not snapshot:
        return _empty_fragments("workflow runs")
    frags: List[Tuple[str, str]] = []
    header = (f"{_pad_display('Workflow', 34)}  {_pad_display('Status', 12)}  {_pad_display('Conclusion', 16)}  "
              f"{_pad_display('Try', 3, 'right')}  {_pad_display('Started', 20)}  Event")
    for repo, runs in snapshot.items():
        shown = runs.workflow_runs if show_all else runs.latest_by_workflow()
        frags.append(("class:table.repo", f"## {repo} ({len(shown)} of {runs.total_count})"))
        frags.append(("", "\n"))
        if not shown:
            frags.append(("class:table.muted", "   (no workflow runs)"))
            frags.append(("", "\n"))
            continue
        frags.append(("class:table.header", header))
        frags.append(("", "\n"))
        for run in shown:
            frags.append(("", f"{_pad_display(run.name or str(run.workflow_id), 34)}  "
                              f"{_pad_display(run.status or '-', 12)}  "))
            frags.append((style_for_run(run), _pad_display(run.conclusion or '-', 16)))
            frags.append(("", f"  {_pad_display(str(run.run_attempt), 3, 'right')}  "
                              f"{_pad_display(run.run_started_at or '-', 20)}  {run.event or '-'}"))
            frags.append(("", "\n"))
    return _finish(frags)


def build_workflows_fragments(snapshot: Mapping[str, Tuple[Workflow, ...]]) -> List[Tuple[str, str]]:
    if not snapshot:
        return _empty_fragments("workflows")
    frags: List[Tuple[str, str]] = []
    header = f"{_pad_display('Name', 34)}  {_pad_display('State', 20)}  Path"
    for repo, workflows in snapshot.items():
        frags.append(("class:table.repo", f"## {repo} ({len(workflows)})"))
        frags.append(("", "\n"))
        if not workflows:
            frags.append(("class:table.muted", "   (no workflows)"))
            frags.append(("", "\n"))
            continue
        frags.append(("class:table.header", header))
        frags.append(("", "\n"))
        for wf in workflows:
            frags.append(("", f"{_pad_display(wf.name, 34)}  "))
            frags.append((style_for_state(wf.state), _pad_display(wf.state, 20)))
            frags.append(("", f"  {wf.path}"))
            frags.append(("", "\n"))
    return _finish(frags)


def build_teams_fragments(snapshot: Mapping[str, Tuple[Team, ...]]) -> List[Tuple[str, str]]:
    if not snapshot:
        return _empty_fragments("teams")
    frags: List[Tuple[str, str]] = []
    header = f"{_pad_display('Name', 34)}  {_pad_display('Slug', 30)}  {_pad_display('Privacy', 10)}  Description"
    for org, teams in snapshot.items():
        frags.append(("class:table.repo", f"## {org} ({len(teams)} teams)"))
        frags.append(("", "\n"))
        if not teams:
            frags.append(("class:table.muted", "   (no teams)"))
            frags.append(("", "\n"))
            continue
        frags.append(("class:table.header", header))
        frags.append(("", "\n"))
        for team in teams:
            frags.append(("", f"{_pad_display(team.name, 34)}  {_pad_display(team.slug, 30)}  "
                              f"{_pad_display(team.privacy or '-', 10)}  {_sanitize_cell_text(team.description)}"))
            frags.append(("", "\n"))
    return _finish(frags)


def build_view_fragments(kind: str, snapshot: Mapping[str, object], show_all_runs: bool = False) -> List[Tuple[str, str]]:
    if kind == KIND_PULLS:
        return build_pulls_fragments(snapshot)
    if kind == KIND_RUNS:
        return build_runs_fragments(snapshot, show_all=show_all_runs)
    if kind == KIND_WORKFLOWS:
        return build_workflows_fragments(snapshot)
    if kind == KIND_TEAMS:
        return build_teams_fragments(snapshot)
    raise ValueError(f"Unknown resource kind: {kind!r}")


def _skip_lines(frags: List[Tuple[str, str]], offset: int) -> List[Tuple[str, str]]:
    if offset <= 0:
        return frags
    seen = 0
    for idx, (_style, text) in enumerate(frags):
        if text == "\n":
            seen += 1
            if seen == offset:
                return frags[idx + 1:]
    return []


def format_summary(dashboard: Dashboard) -> str:
    """Plain-text summary used by --no-ui."""
    lines: List[str] = []
    pulls = dashboard.snapshot(KIND_PULLS)
    runs = dashboard.snapshot(KIND_RUNS)
    workflows = dashboard.snapshot(KIND_WORKFLOWS)
    teams = dashboard.snapshot(KIND_TEAMS)
    lines.append(f"Repositories: {len(dashboard.repositories())} ({dashboard.cfg.org})")
    lines.append(f"Pull requests: {sum(len(v) for v in pulls.values())}")
    for repo, prs in pulls.items():
        lines.append(f"  {repo}: {len(prs)}")
    failing = 0
    for wr in runs.values():
        failing += sum(1 for r in wr.latest_by_workflow() if (r.conclusion or '').lower() in FAILED_CONCLUSIONS)
    lines.append(f"Workflows: {sum(len(v) for v in workflows.values())}  (latest run failing: {failing})")
    lines.append(f"Teams: {sum(len(v) for v in teams.values())}")
    return "\n".join(lines)


# -----------------------------
# TUI
# -----------------------------
def start_refresh(dashboard: Dashboard, kinds: Iterable[str], pending: List[Future]) -> str:
    """Trigger each kind, collect its futures into ``pending`` and return the status line text."""
    issued = 0
    errors: List[str] = []
    for kind in kinds:
        try:
            futures = dashboard.trigger(kind)
        except RuntimeError as exc:
            logging.getLogger('gh_repo_dashboard').error("Refresh of %s not started: %s", kind, exc)
            errors.append(f"{kind}: {exc}")
            continue
        pending.extend(futures)
        issued += len(futures)
    if errors:
        return f"Error: {'; '.join(errors)} (requested {issued} fetches)"
    return f"Requested {issued} fetches"


def run_ui(dashboard: Dashboard, state_store: UiStateStore, credential_store: CredentialStore,
           ui_state: Optional[UiState] = None) -> None:
    """Full-screen dashboard. The table is rebuilt from fresh snapshots on every repaint."""
    logger = logging.getLogger('gh_repo_dashboard')
    st = ui_state or state_store.load()
    view = st.view if st.view in KINDS else KIND_PULLS
    show_all_runs = st.show_all_runs
    repos = dashboard.repositories()
    current_index = min(st.current_index, max(0, len(repos) - 1))
    repo_filter: Optional[str] = None
    v_offset = 0
    input_mode: Optional[str] = None   # 'add' | 'token'
    input_buffer = ""
    status_line = "Press u to fetch, ? for keys" if not any(len(dashboard.stores[k]) for k in KINDS) else ""
    pending: List[Future] = []

    style = Style.from_dict(BASE_STYLE)

    def _save_state() -> None:
        state_store.save(UiState(
            repositories=dashboard.repositories(),
            view=view,
            current_index=current_index,
            show_all_runs=show_all_runs,
        ))
        credential_store.save(dashboard.token)

    def selected_repo() -> Optional[str]:
        names = dashboard.repositories()
        if not names:
            return None
        return names[max(0, min(current_index, len(names) - 1))]

    def build_table() -> List[Tuple[str, str]]:
        snap = dashboard.snapshot(view)
        if repo_filter is not None and view != KIND_TEAMS:
            snap = {k: v for k, v in snap.items() if k == repo_filter}
        return _skip_lines(build_view_fragments(view, snap, show_all_runs=show_all_runs), v_offset)

    def build_sidebar() -> List[Tuple[str, str]]:
        frags: List[Tuple[str, str]] = [("class:sidebar.title", f"Repositories ({dashboard.cfg.org})"), ("", "\n")]
        names = dashboard.repositories()
        if not names:
            frags.append(("class:table.muted", "(none; press A)"))
        for idx, name in enumerate(names):
            marker = "▸ " if name == repo_filter else "  "
            line = _pad_display(marker + name, 26)
            frags.append(("class:sidebar.cursor" if idx == current_index else "", line))
            frags.append(("", "\n"))
        return _finish(frags)

    def build_top_status() -> List[Tuple[str, str]]:
        tabs = "  ".join(
            f"[{i}] {KIND_LABELS[k]}{'*' if k == view else ''}" for i, k in enumerate(KINDS, start=1))
        runs_mode = " | runs: all" if (view == KIND_RUNS and show_all_runs) else ""
        scope = repo_filter or "all repos"
        return [("class:status", f" {tabs} | {scope}{runs_mode} ")]

    def build_status_bar() -> List[Tuple[str, str]]:
        if input_mode == 'add':
            return [("class:input", f" Add repository: {input_buffer}_ (Enter=add, Esc=cancel)")]
        if input_mode == 'token':
            return [("class:input", f" Token: {'*' * len(input_buffer)}_ (Enter=save, Esc=cancel)")]
        in_flight = sum(1 for f in pending if not f.done())
        failed = dashboard.driver.failures(view)
        parts = [f" {KIND_LABELS[view]}"]
        if in_flight:
            parts.append(f"⟳ {in_flight} in flight")
        if failed:
            parts.append(f"✗ {failed} failed (see log)")
        if not dashboard.token:
            parts.append("no token (T)")
        if status_line:
            parts.append(status_line)
        return [("class:status", "  ".join(parts) + " ")]

    table_control = FormattedTextControl(text=lambda: build_table())
    table_window = Window(content=table_control, wrap_lines=False, always_hide_cursor=True)
    sidebar_window = Window(content=FormattedTextControl(text=lambda: build_sidebar()), width=28,
                            style="class:sidebar", always_hide_cursor=True)
    top_status_window = Window(height=1, content=FormattedTextControl(text=lambda: build_top_status()))
    status_window = Window(height=1, content=FormattedTextControl(text=lambda: build_status_bar()))
    root = HSplit([
        top_status_window,
        VSplit([sidebar_window, Window(width=1, char='│'), table_window]),
        status_window,
    ])

    app: Optional[Application] = None
    kb = KeyBindings()
    is_input = Condition(lambda: input_mode is not None)
    is_normal = Condition(lambda: input_mode is None)

    def invalidate():
        if app is not None:
            app.invalidate()

    def refresh(kinds: Iterable[str]) -> None:
        nonlocal status_line
        status_line = start_refresh(dashboard, kinds, pending)
        invalidate()

    @kb.add('1', filter=is_normal)
    @kb.add('2', filter=is_normal)
    @kb.add('3', filter=is_normal)
    @kb.add('4', filter=is_normal)
    def _(event):
        nonlocal view, v_offset
        view = KINDS[int(event.key_sequence[0].key) - 1]
        v_offset = 0
        invalidate()

    @kb.add('u', filter=is_normal)
    def _(event):
        refresh([view])

    @kb.add('U', filter=is_normal)
    def _(event):
        refresh(KINDS)

    @kb.add('r', filter=is_normal)
    def _(event):
        nonlocal show_all_runs
        show_all_runs = not show_all_runs
        invalidate()

    def move(delta: int) -> None:
        nonlocal current_index, repo_filter, v_offset
        names = dashboard.repositories()
        if not names:
            current_index = 0
            return
        current_index = max(0, min(len(names) - 1, current_index + delta))
        repo_filter = names[current_index]
        v_offset = 0
        invalidate()

    @kb.add('j', filter=is_normal)
    @kb.add('down', filter=is_normal)
    def _(event):
        move(1)

    @kb.add('k', filter=is_normal)
    @kb.add('up', filter=is_normal)
    def _(event):
        move(-1)

    @kb.add('*', filter=is_normal)
    def _(event):
        nonlocal repo_filter, v_offset
        repo_filter = None
        v_offset = 0
        invalidate()

    @kb.add('pagedown', filter=is_normal)
    def _(event):
        nonlocal v_offset
        v_offset += 10
        invalidate()

    @kb.add('pageup', filter=is_normal)
    def _(event):
        nonlocal v_offset
        v_offset = max(0, v_offset - 10)
        invalidate()

    @kb.add('A', filter=is_normal)
    def _(event):
        nonlocal input_mode, input_buffer
        input_mode = 'add'
        input_buffer = ""
        invalidate()

    @kb.add('T', filter=is_normal)
    def _(event):
        nonlocal input_mode, input_buffer
        input_mode = 'token'
        input_buffer = ""
        invalidate()

    @kb.add('X', filter=is_normal)
    def _(event):
        nonlocal current_index, repo_filter, status_line
        name = selected_repo()
        if name is None:
            return
        dashboard.remove_repository(name)
        if repo_filter == name:
            repo_filter = None
        current_index = max(0, min(current_index, len(dashboard.repositories()) - 1))
        status_line = f"Removed {name}"
        logger.info("Stopped tracking %s", name)
        invalidate()

    @kb.add('enter', filter=is_input)
    def _(event):
        nonlocal input_mode, input_buffer, status_line
        value = input_buffer.strip()
        if input_mode == 'add':
            if dashboard.add_repository(value):
                status_line = f"Tracking {value}; press u to fetch"
                logger.info("Started tracking %s", value)
            else:
                status_line = "Nothing added (empty or already tracked)"
        elif input_mode == 'token':
            dashboard.set_token(value)
            status_line = "Token updated" if value else "Token cleared"
        input_mode = None
        input_buffer = ""
        invalidate()

    @kb.add('escape', filter=is_input)
    def _(event):
        nonlocal input_mode, input_buffer
        input_mode = None
        input_buffer = ""
        invalidate()

    @kb.add('backspace', filter=is_input)
    def _(event):
        nonlocal input_buffer
        input_buffer = input_buffer[:-1]
        invalidate()

    @kb.add(Keys.Any, filter=is_input)
    def _(event):
        nonlocal input_buffer
        ch = event.data or ""
        if ch.isprintable():
            input_buffer += ch
            invalidate()

    @kb.add('?', filter=is_normal)
    def _(event):
        nonlocal status_line
        status_line = "1-4 views · u/U refresh · j/k repo · * all · A/X add/remove · T token · r runs · q quit"
        invalidate()

    @kb.add('q', filter=is_normal)
    @kb.add('c-c')
    def _(event):
        _save_state()
        event.app.exit()

    app = Application(layout=Layout(root), key_bindings=kb, full_screen=True, mouse_support=True, style=style)

    # Background ticker: completions land off the UI thread, so repaint periodically.
    async def _ticker():
        while True:
            await asyncio.sleep(1)
            pending[:] = [f for f in pending if not f.done()]
            invalidate()

    def _start_ticker() -> None:
        app.create_background_task(_ticker())

    try:
        app.run(pre_run=_start_ticker)
    finally:
        dashboard.close()


# -----------------------------
# Utilities / Mock
# -----------------------------
def generate_mock_results(dashboard: Dashboard) -> None:
    """Fill every store with synthetic data for offline demo & testing."""
    stamp = "2024-01-15T10:00:00Z"
    conclusions = ["success", "failure", "success", "cancelled"]
    for i, repo in enumerate(dashboard.repositories()):
        prs = tuple(
            PullRequest(
                id=1000 * (i + 1) + n,
                number=n,
                title=f"Bump dependency {n} in {repo}",
                user_login="dependabot[bot]" if n % 2 else "octocat",
                html_url=f"https://github.com/{dashboard.cfg.org}/{repo}/pull/{n}",
                updated_at=stamp,
                state="open",
            )
            for n in range(1, (i % 3) + 2)
        )
        dashboard.stores[KIND_PULLS].upsert(repo, prs)
        runs = tuple(
            WorkflowRun(
                id=5000 * (i + 1) + w * 10 + attempt,
                workflow_id=100 + w,
                run_attempt=attempt,
                name=("Build", "Deploy")[w],
                status="completed",
                conclusion=conclusions[(i + w + attempt) % len(conclusions)],
                run_started_at=f"2024-01-15T0{attempt}:00:00Z",
                event="push",
            )
            for w in range(2)
            for attempt in (1, 2)
        )
        dashboard.stores[KIND_RUNS].upsert(repo, WorkflowRuns(total_count=len(runs), workflow_runs=runs))
        dashboard.stores[KIND_WORKFLOWS].upsert(repo, (
            Workflow(id=100, name="Build", path=".github/workflows/build.yml", state="active"),
            Workflow(id=101, name="Deploy", path=".github/workflows/deploy.yml",
                     state="active" if i % 2 == 0 else "disabled_manually"),
        ))
    teams = tuple(
        Team(id=900 + n, name=f"Team {n}", slug=f"team-{n}", privacy="closed") for n in range(1, 6)
    )
    dashboard.stores[KIND_TEAMS].upsert(dashboard.cfg.org, teams)


# -----------------------------
# CLI
# -----------------------------
def main(argv: Optional[List[str]] = None) -> None:
    ap = argparse.ArgumentParser(description="GitHub repository dashboard (pull requests, workflow runs, teams)")
    ap.add_argument("--config", help="Path to YAML config (defaults built in)")
    ap.add_argument("--state", default=UI_STATE_PATH, help="Path to UI state JSON")
    ap.add_argument("--log-level", default="ERROR", help="File log level (DEBUG, INFO, WARNING, ERROR)")
    ap.add_argument("--no-ui", action="store_true", help="Refresh everything once, print a summary and exit")
    ap.add_argument("--wait", type=float, metavar="SECONDS",
                    help="With --no-ui, print after at most SECONDS instead of waiting for every fetch")
    args = ap.parse_args(argv)
    if args.wait is not None and args.wait < 0:
        ap.error("--wait must not be negative")

    configure_logging(args.log_level)
    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        print(str(e), file=sys.stderr)
        sys.exit(2)

    state_store = UiStateStore(args.state)
    ui_state = state_store.load()
    if ui_state.repositories is not None:
        cfg.repositories = list(ui_state.repositories)
    credential_store = make_credential_store(cfg)
    # Token precedence: env var, .env TOKEN/GITHUB_TOKEN, credential store
    token = os.environ.get("GITHUB_TOKEN") or load_dotenv_token() or credential_store.load() or ""

    dashboard = Dashboard(cfg, token=token)
    mock = os.environ.get("MOCK_FETCH") == "1"
    if mock:
        logging.getLogger('gh_repo_dashboard').info("MOCK_FETCH enabled; generating mock results")
        dashboard.load_mock_results()

    if args.no_ui:
        futures: List[Future] = []
        try:
            if not mock:
                futures = dashboard.trigger_all()
            if args.wait is not None:
                _done, not_done = wait_futures(futures, timeout=args.wait)
                if not_done:
                    print(f"{len(not_done)} fetches did not finish within {args.wait:g}s", file=sys.stderr)
        finally:
            if args.wait is None:
                # Waiting for the pool also waits for every completion callback.
                dashboard.close(wait=True)
            else:
                dashboard.close(wait=False, cancel=True)
        print(format_summary(dashboard))
        return

    run_ui(dashboard, state_store, credential_store, ui_state)


if __name__ == "__main__":
    main()
