"""
Tests for the module-level engine helpers.

Verifies:
- Helpers refuse to run before init_engine_from_url()
- session_scope() commits on success and rolls back on error
- The settings bridge initializes the process engine
- Money columns keep their value and new rows start at version 1
"""

from decimal import Decimal

import pytest
from sqlalchemy import select

from completion_ledger.db.engine import (
    create_tables,
    get_engine,
    get_session,
    init_engine_from_url,
    is_postgres,
    reset_engine,
    session_scope,
)
from completion_ledger.models.project import Project
from completion_ledger.models.sequence import SequenceCounter
from ledger_config.bridges import build_unit_of_work_factory
from ledger_config.loader import parse_settings


@pytest.fixture
def module_engine(tmp_path):
    engine = init_engine_from_url(f"sqlite:///{tmp_path / 'module.db'}")
    create_tables()
    yield engine
    reset_engine()


class TestUninitialized:
    def test_get_engine_raises(self):
        reset_engine()
        with pytest.raises(RuntimeError, match="init_engine_from_url"):
            get_engine()

    def test_get_session_raises(self):
        reset_engine()
        with pytest.raises(RuntimeError):
            get_session()

    def test_not_postgres(self):
        reset_engine()
        assert not is_postgres()


class TestSessionScope:
    def test_commits(self, module_engine):
        with session_scope() as session:
            session.add(SequenceCounter(name="invoice:NM", current_value=4))

        with session_scope() as session:
            counter = session.execute(select(SequenceCounter)).scalar_one()
            assert counter.current_value == 4

    def test_rolls_back_on_error(self, module_engine):
        with pytest.raises(ValueError):
            with session_scope() as session:
                session.add(SequenceCounter(name="invoice:NM", current_value=4))
                session.flush()
                raise ValueError("boom")

        with session_scope() as session:
            assert session.execute(select(SequenceCounter)).first() is None

    def test_engine_is_sqlite(self, module_engine):
        assert get_engine() is module_engine
        assert not is_postgres()


class TestBridge:
    def test_unit_of_work_factory(self, tmp_path):
        settings = parse_settings({"database_url": f"sqlite:///{tmp_path / 'bridge.db'}"})
        try:
            factory = build_unit_of_work_factory(settings)
            create_tables()
            with factory() as uow:
                assert uow.sequences.next_value("invoice:NM") == 1
                uow.commit()
            with factory() as uow:
                assert uow.sequences.current_value("invoice:NM") == 1
        finally:
            reset_engine()

    def test_money_column_round_trip(self, module_engine):
        with session_scope() as session:
            session.add(
                Project(
                    project_id="proj-1",
                    title="Project proj-1",
                    total_budget=Decimal("5000.00"),
                    invoicing_method="completion",
                    status="ongoing",
                    paid_to_date=Decimal("0"),
                )
            )

        with session_scope() as session:
            project = session.execute(select(Project)).scalar_one()
            assert project.total_budget == Decimal("5000")
            assert project.version == 1
