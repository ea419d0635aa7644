import os

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect

ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


def _config():
    # No ini file, so the test run's logging setup is left alone
    config = Config()
    config.set_main_option("script_location", os.path.join(ROOT, "alembic"))
    return config


def test_upgrade_uses_database_url(tmp_path, monkeypatch):
    url = f"sqlite:///{tmp_path / 'migrated.db'}"
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("DATABASE_URL", url)

    command.upgrade(_config(), "head")

    engine = create_engine(url)
    try:
        tables = set(inspect(engine).get_table_names())
    finally:
        engine.dispose()
    assert {"invoices", "invoice_items", "payments", "config", "alembic_version"} <= tables
