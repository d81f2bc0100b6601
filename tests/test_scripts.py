import pytest

from scripts import release, start


def test_gunicorn_argv_defaults(monkeypatch):
    for k in ("PORT", "WEB_CONCURRENCY", "GUNICORN_TIMEOUT"):
        monkeypatch.delenv(k, raising=False)
    argv = start.gunicorn_argv()
    assert argv[:2] == ["gunicorn", "app.wsgi:app"]
    assert argv[argv.index("--bind") + 1] == "0.0.0.0:8080"
    assert argv[argv.index("--workers") + 1] == "2"
    assert argv[argv.index("--timeout") + 1] == "60"


def test_gunicorn_argv_reads_env(monkeypatch):
    monkeypatch.setenv("PORT", "5050")
    monkeypatch.setenv("WEB_CONCURRENCY", "4")
    argv = start.gunicorn_argv()
    assert argv[argv.index("--bind") + 1] == "0.0.0.0:5050"
    assert argv[argv.index("--workers") + 1] == "4"


@pytest.mark.parametrize("port", ["abc", "0", "70000"])
def test_gunicorn_argv_rejects_bad_port(monkeypatch, port):
    monkeypatch.setenv("PORT", port)
    with pytest.raises(SystemExit):
        start.gunicorn_argv()


def test_release_requires_database_url(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    with pytest.raises(RuntimeError):
        release.run_release()


def test_release_refuses_sqlite_in_production(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "sqlite:///folio.db")
    monkeypatch.setenv("ENV", "production")
    with pytest.raises(RuntimeError, match="Postgres"):
        release.run_release()


def test_release_migrates_and_seeds(tmp_path, monkeypatch):
    db_url = f"sqlite:///{tmp_path/'release.db'}"
    monkeypatch.setenv("DATABASE_URL", db_url)
    monkeypatch.setenv("ENV", "test")
    release.run_release()
    release.run_release()

    from sqlalchemy import create_engine, inspect, text

    engine = create_engine(db_url)
    tables = set(inspect(engine).get_table_names())
    assert {"posts", "media_assets", "site_settings", "projects", "alembic_version"} <= tables
    with engine.connect() as conn:
        assert conn.execute(text("SELECT count(*) FROM users")).scalar() == 1
    engine.dispose()
