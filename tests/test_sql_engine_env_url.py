import pytest

from rollups.sql.engine import create_engine, resolve_database_url


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for k in ("ROLLUPS_DATABASE_URL", "DATABASE_URL", "ROLLUPS_DB_PATH"):
        monkeypatch.delenv(k, raising=False)


def test_explicit_url_wins(monkeypatch):
    monkeypatch.setenv("ROLLUPS_DATABASE_URL", "sqlite:///env.db")
    assert resolve_database_url("sqlite:///arg.db") == "sqlite:///arg.db"


def test_env_precedence(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "sqlite:///generic.db")
    assert resolve_database_url() == "sqlite:///generic.db"
    monkeypatch.setenv("ROLLUPS_DATABASE_URL", "sqlite:///specific.db")
    assert resolve_database_url() == "sqlite:///specific.db"


def test_db_path_env(monkeypatch, tmp_path):
    monkeypatch.setenv("ROLLUPS_DB_PATH", str(tmp_path / "rounds.db"))
    assert resolve_database_url() == f"sqlite:///{tmp_path / 'rounds.db'}"


def test_missing_url_raises():
    with pytest.raises(RuntimeError, match="No database URL"):
        resolve_database_url()


def test_sqlite_pragmas_applied(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'x.db'}")
    with engine.connect() as conn:
        assert conn.exec_driver_sql("PRAGMA journal_mode").scalar() == "wal"
        assert conn.exec_driver_sql("PRAGMA busy_timeout").scalar() == 30000
    engine.dispose()
