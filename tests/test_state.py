import json
import logging
import logging.handlers
import os
import stat

import pytest

import gh_repo_dashboard as ghd


# -----------------------------
# Config
# -----------------------------
def test_config_defaults_without_file():
    cfg = ghd.load_config(None)
    assert cfg.org == 'navikt'
    assert cfg.repositories == ghd.DEFAULT_REPOSITORIES
    assert cfg.timeout == 30.0
    assert cfg.max_workers == 16
    assert cfg.credential_store == 'plaintext'


def test_config_file_overrides(tmp_path):
    path = tmp_path / 'config.yaml'
    path.write_text(
        "org: acme\n"
        "repositories: [api, api, ' web ']\n"
        "api_url: https://ghe.example.com/api/v3/\n"
        "timeout: 5\n"
        "team_pages: 1\n"
        "credential_store: ENV\n",
        encoding='utf-8',
    )
    cfg = ghd.load_config(str(path))
    assert cfg.org == 'acme'
    assert cfg.repositories == ['api', 'web']
    assert cfg.api_url == 'https://ghe.example.com/api/v3'
    assert cfg.timeout == 5.0
    assert cfg.team_pages == 1
    assert cfg.credential_store == 'env'


@pytest.mark.parametrize('text', [
    "repositories: [a]\n",
    "org: acme\nrepositories: a\n",
    "org: acme\ncredential_store: keychain\n",
    "org: acme\ntimeout: 0\n",
    "- just\n- a list\n",
    "org: [unclosed\n",
])
def test_config_rejects_invalid_files(tmp_path, text):
    path = tmp_path / 'config.yaml'
    path.write_text(text, encoding='utf-8')
    with pytest.raises(ghd.ConfigError):
        ghd.load_config(str(path))


def test_config_missing_file_is_config_error(tmp_path):
    with pytest.raises(ValueError):
        ghd.load_config(str(tmp_path / 'nope.yaml'))


# -----------------------------
# UI state
# -----------------------------
def test_ui_state_missing_file_gives_defaults(temp_state_path):
    state = ghd.UiStateStore(str(temp_state_path)).load()
    assert state.repositories is None
    assert state.view == ghd.KIND_PULLS
    assert state.current_index == 0
    assert state.show_all_runs is False


def test_ui_state_round_trip(temp_state_path):
    store = ghd.UiStateStore(str(temp_state_path))
    store.save(ghd.UiState(repositories=['a', 'b'], view=ghd.KIND_RUNS, current_index=1, show_all_runs=True))
    data = json.loads(temp_state_path.read_text(encoding='utf-8'))
    assert data['repositories'] == ['a', 'b']
    state = store.load()
    assert state.repositories == ['a', 'b']
    assert state.view == ghd.KIND_RUNS
    assert state.current_index == 1
    assert state.show_all_runs is True


def test_ui_state_tolerates_bad_fields(temp_state_path):
    temp_state_path.write_text(json.dumps({'view': 'issues', 'current_index': 'x', 'repositories': ['a', '', 'a']}),
                               encoding='utf-8')
    state = ghd.UiStateStore(str(temp_state_path)).load()
    assert state.view == ghd.KIND_PULLS
    assert state.current_index == 0
    assert state.repositories == ['a']


def test_ui_state_tolerates_corrupt_file(temp_state_path):
    temp_state_path.write_text('{not json', encoding='utf-8')
    assert ghd.UiStateStore(str(temp_state_path)).load() == ghd.UiState()


# -----------------------------
# Credentials
# -----------------------------
def test_plaintext_store_round_trip_is_private(temp_token_path):
    store = ghd.PlaintextCredentialStore(str(temp_token_path))
    assert store.load() is None
    store.save(' secret \n')
    assert store.load() == 'secret'
    assert json.loads(temp_token_path.read_text(encoding='utf-8')) == {'token': 'secret'}
    if os.name == 'posix':
        assert stat.S_IMODE(os.stat(temp_token_path).st_mode) == 0o600


def test_env_store_never_writes(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv('GITHUB_TOKEN', 'from-env')
    store = ghd.make_credential_store(ghd.Config(credential_store='env'), str(tmp_path / 'token.json'))
    assert isinstance(store, ghd.EnvCredentialStore)
    store.save('other')
    assert store.load() == 'from-env'
    assert not (tmp_path / 'token.json').exists()


def test_make_credential_store_defaults_to_plaintext(temp_token_path):
    store = ghd.make_credential_store(ghd.Config(), str(temp_token_path))
    assert isinstance(store, ghd.PlaintextCredentialStore)
    assert store.path == str(temp_token_path)


def test_dotenv_token_from_cwd(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    # Registers GITHUB_TOKEN so the value set by the loader is undone afterwards.
    monkeypatch.setenv('GITHUB_TOKEN', 'placeholder')
    monkeypatch.delenv('GITHUB_TOKEN')
    (tmp_path / '.env').write_text("# comment\nTOKEN='abc123'\n", encoding='utf-8')
    assert ghd.load_dotenv_token() == 'abc123'
    assert os.environ['GITHUB_TOKEN'] == 'abc123'


# -----------------------------
# Logging
# -----------------------------
def test_configure_logging_uses_rotating_file(tmp_path):
    log_path = tmp_path / 'dash.log'
    logger = ghd.configure_logging('info', str(log_path))
    try:
        (handler,) = logger.handlers
        assert isinstance(handler, logging.handlers.RotatingFileHandler)
        assert handler.level == logging.INFO
        logger.info('refresh started')
        logger.debug('not written')
        handler.flush()
        text = log_path.read_text(encoding='utf-8')
        assert 'INFO refresh started' in text
        assert 'not written' not in text
    finally:
        for h in list(logger.handlers):
            logger.removeHandler(h)
            h.close()
        logger.propagate = True


def test_configure_logging_unknown_level_falls_back_to_error(tmp_path):
    logger = ghd.configure_logging('chatty', str(tmp_path / 'dash.log'))
    try:
        assert logger.handlers[0].level == logging.ERROR
    finally:
        for h in list(logger.handlers):
            logger.removeHandler(h)
            h.close()
        logger.propagate = True
