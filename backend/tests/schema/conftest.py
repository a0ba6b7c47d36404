"""Pytest fixtures for schema tests.

Builds a SQLite database from the Alembic migrations (not from the model
metadata) so the migrations themselves are what gets checked.
"""

from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

MIGRATIONS_DIR = Path(__file__).parent.parent.parent / "migrations"


def _alembic_config(connection) -> Config:
    """Alembic config bound to an open connection."""
    config = Config()
    config.set_main_option("script_location", str(MIGRATIONS_DIR))
    config.attributes["connection"] = connection
    return config


@pytest.fixture(scope="class")
def migrated_engine(tmp_path_factory) -> Engine:
    """Engine for a database upgraded to the latest revision."""
    db_path = tmp_path_factory.mktemp("schema") / "migrated.db"
    engine = create_engine(f"sqlite:///{db_path}")

    with engine.begin() as connection:
        command.upgrade(_alembic_config(connection), "head")

    yield engine
    engine.dispose()


@pytest.fixture
def alembic_config():
    """Factory for Alembic configs bound to a connection."""
    return _alembic_config
