from datetime import date
from decimal import Decimal
from pathlib import Path

from alembic import command
from alembic.config import Config
from alembic.script import ScriptDirectory
from sqlalchemy import create_engine, inspect
from sqlalchemy.orm import Session

from app.models import Base, Bill, Mda, Role, User
from app.models.bill import BillStatus
from app.services.bill_store import cas_update_bill, get_bill, insert_bill

ROOT = Path(__file__).resolve().parents[1]


def _alembic_config(url: str) -> Config:
    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "alembic"))
    cfg.attributes["sqlalchemy.url"] = url
    cfg.attributes["configure_logger"] = False
    return cfg


def test_single_head():
    script = ScriptDirectory.from_config(_alembic_config("sqlite://"))
    assert len(script.get_heads()) == 1


def test_upgrade_creates_every_mapped_table(tmp_path):
    url = f"sqlite:///{tmp_path / 'migrated.db'}"
    command.upgrade(_alembic_config(url), "head")

    engine = create_engine(url, future=True)
    try:
        tables = set(inspect(engine).get_table_names())
        assert set(Base.metadata.tables) <= tables
        assert "alembic_version" in tables
        bill_columns = {col["name"] for col in inspect(engine).get_columns("bills")}
        assert set(Base.metadata.tables["bills"].columns.keys()) <= bill_columns
    finally:
        engine.dispose()


def test_orm_round_trip_on_migrated_schema(tmp_path):
    url = f"sqlite:///{tmp_path / 'roundtrip.db'}"
    command.upgrade(_alembic_config(url), "head")

    engine = create_engine(url, future=True)
    try:
        with Session(engine) as session:
            mda = Mda(code="FMH", name="Federal Ministry of Health")
            user = User(username="acme", email="acme@example.com", role=Role.SUPPLIER)
            session.add_all([mda, user])
            session.flush()
            bill = Bill(
                supplier_id=user.id,
                mda_id=mda.id,
                invoice_number="INV-MIG-1",
                invoice_date=date(2025, 2, 1),
                amount=Decimal("750.25"),
                currency="NGN",
                last_rejected_by_supplier=False,
            )
            insert_bill(session, bill, note="created", actor_user_id=user.id)
            assert cas_update_bill(session, bill.id, BillStatus.SUBMITTED, {"status": BillStatus.UNDER_REVIEW})
            session.commit()

            stored = get_bill(session, bill.id)
            assert stored.status == BillStatus.UNDER_REVIEW
            assert stored.amount == Decimal("750.25")
            assert stored.version == 2
    finally:
        engine.dispose()


def test_downgrade_to_base_drops_tables(tmp_path):
    url = f"sqlite:///{tmp_path / 'down.db'}"
    cfg = _alembic_config(url)
    command.upgrade(cfg, "head")
    command.downgrade(cfg, "base")

    engine = create_engine(url, future=True)
    try:
        assert set(inspect(engine).get_table_names()) <= {"alembic_version"}
    finally:
        engine.dispose()
