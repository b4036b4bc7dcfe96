import os
from pathlib import Path

from manas.backend.app import main


def test_resolve_db_path_stable_across_cwd(monkeypatch):
    original = os.getcwd()
    expected = Path(main.__file__).resolve().parents[3] / "manas.db"
    monkeypatch.delenv("MANAS_DB_PATH", raising=False)
    monkeypatch.delenv("DB_PATH", raising=False)
    try:
        os.chdir(Path(main.__file__).resolve().parents[2])
        resolved = Path(main.resolve_db_path())
        assert resolved == expected
    finally:
        os.chdir(original)


def test_relative_db_path_resolves_against_repo_root(monkeypatch):
    monkeypatch.setenv("MANAS_DB_PATH", "data/test.db")
    assert Path(main.resolve_db_path()) == main.REPO_ROOT / "data" / "test.db"


def test_upload_dir_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv("MANAS_UPLOAD_DIR", str(tmp_path))
    assert main.resolve_upload_dir() == tmp_path


def test_dev_mode_flags(monkeypatch):
    monkeypatch.delenv("MANAS_DEV_MODE", raising=False)
    monkeypatch.setenv("DEV_MODE", "yes")
    assert main.is_dev_mode() is True
    monkeypatch.setenv("DEV_MODE", "0")
    assert main.is_dev_mode() is False


def test_journal_columns_added_to_older_table(tmp_path):
    engine = main.create_engine(f"sqlite:///{tmp_path / 'old.db'}")
    with engine.connect() as connection:
        connection.execute(main.text(
            "CREATE TABLE journal_entries (id INTEGER PRIMARY KEY, user_id INTEGER, content VARCHAR, "
            "created_at DATETIME)"
        ))
        connection.execute(main.text(
            "INSERT INTO journal_entries (user_id, content, created_at) VALUES (1, 'hi', '2026-01-01 09:00:00')"
        ))
        connection.commit()
    main.ensure_journal_columns(bind=engine)
    main.ensure_journal_columns(bind=engine)
    with engine.connect() as connection:
        row = connection.execute(main.text("SELECT template_type, updated_at FROM journal_entries")).one()
    engine.dispose()
    assert row[0] == "cute"
    assert row[1] == "2026-01-01 09:00:00"
