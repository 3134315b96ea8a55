import gh_repo_dashboard as ghd


def _teams(*names):
    return [{'id': i, 'name': n, 'slug': n.lower().replace(' ', '-'), 'description': None, 'privacy': 'closed'}
            for i, n in enumerate(names, start=1)]


def _pager(executor, store=None, pages=3):
    api = ghd.GitHubApi(ghd.Transport(executor), 'navikt')
    store = store if store is not None else ghd.ResultMap('teams')
    gen = store.next_generation()
    return ghd.TeamPager(api, store, 'tok', gen, pages=pages, per_page=100), store


def test_all_pages_are_flattened_in_page_order(fake_github, manual_executor):
    fake_github.reply(fake_github.teams_url(1), _teams('A', 'B'))
    fake_github.reply(fake_github.teams_url(2), _teams('C'))
    fake_github.reply(fake_github.teams_url(3), {})
    pager, store = _pager(manual_executor)

    pager.start()
    manual_executor.run(2)
    manual_executor.run(1)
    manual_executor.run(0)

    assert [t.name for t in store.get('navikt')] == ['A', 'B', 'C']
    assert pager.state == ghd.TeamPager.FLATTENED
    assert pager.pages_received() == [1, 2, 3]


def test_immediate_flatten_publishes_before_pages_arrive(fake_github, manual_executor):
    fake_github.reply(fake_github.teams_url(1), _teams('A'))
    pager, store = _pager(manual_executor)

    pager.start()

    assert store.get('navikt') == ()
    assert pager.state == ghd.TeamPager.DRAINING

    manual_executor.run(0)
    assert [t.name for t in store.get('navikt')] == ['A']
    assert pager.state == ghd.TeamPager.DRAINING


def test_undecodable_page_is_skipped(fake_github, manual_executor):
    fake_github.reply(fake_github.teams_url(1), _teams('A'))
    fake_github.reply(fake_github.teams_url(2), body=b'{"message": "Server Error"}')
    fake_github.reply(fake_github.teams_url(3), _teams('C'))
    pager, store = _pager(manual_executor)

    pager.start()
    manual_executor.run_all()

    assert [t.name for t in store.get('navikt')] == ['A', 'C']
    assert pager.failures == 1
    assert pager.state == ghd.TeamPager.FLATTENED


def test_failed_page_request_is_counted(fake_github, inline_executor):
    fake_github.reply(fake_github.teams_url(1), _teams('A'))
    fake_github.fail(fake_github.teams_url(2))
    pager, store = _pager(inline_executor, pages=2)

    pager.start()

    assert [t.name for t in store.get('navikt')] == ['A']
    assert pager.failures == 1
    assert pager.state == ghd.TeamPager.FLATTENED


def test_teams_urls_carry_page_and_size(fake_github, inline_executor):
    pager, _store = _pager(inline_executor)
    pager.start()
    assert fake_github.urls_called() == [fake_github.teams_url(p) for p in (1, 2, 3)]


def test_older_team_refresh_does_not_overwrite_newer(fake_github, manual_executor):
    fake_github.reply(fake_github.teams_url(1), _teams('Old'))
    store = ghd.ResultMap('teams')
    old, _ = _pager(manual_executor, store=store, pages=1)
    new, _ = _pager(manual_executor, store=store, pages=1)
    old.start()
    new.start()

    fake_github.reply(fake_github.teams_url(1), _teams('New'))
    manual_executor.run(1)
    fake_github.reply(fake_github.teams_url(1), _teams('Old'))
    manual_executor.run(0)

    assert [t.name for t in store.get('navikt')] == ['New']


def test_driver_reports_team_failures(fake_github, inline_executor):
    fake_github.reply(fake_github.teams_url(1), _teams('A'))
    cfg = ghd.Config(repositories=[], team_pages=2)
    dash = ghd.Dashboard(cfg, token='tok', executor=inline_executor)

    dash.trigger(ghd.KIND_TEAMS)

    assert [t.name for t in dash.snapshot(ghd.KIND_TEAMS)['navikt']] == ['A']
    assert dash.driver.failures(ghd.KIND_TEAMS) == 1
