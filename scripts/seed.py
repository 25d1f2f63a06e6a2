"""Seed fixture MDAs, one user per role and a few bills for local runs."""
from __future__ import annotations

from datetime import date
from decimal import Decimal

from dotenv import load_dotenv

load_dotenv()

from app import models
from app.config import get_settings
from app.db import create_all, init_engine, session_scope
from app.schemas.bill import BillCreate, OfferCreate
from app.services import lifecycle
from app.utils.apikey import gen_key

MDAS = [
    ("FMOH", "Federal Ministry of Health"),
    ("FMW", "Federal Ministry of Works"),
    ("FMOE", "Federal Ministry of Education"),
]


def _user(session, username: str, role: models.Role, *, scope_id: int | None = None, company: str | None = None):
    user = models.User(
        username=username,
        email=f"{username}@example.com",
        role=role,
        role_scope_id=scope_id,
        company_name=company,
        is_active=True,
    )
    session.add(user)
    session.flush()
    raw, prefix, key_hash = gen_key()
    session.add(models.ApiKey(name=f"seed-{username}", prefix=prefix, key_hash=key_hash, user_id=user.id))
    return user, raw


def main() -> None:
    settings = get_settings()
    print(f"Using database: {settings.database_url}")

    init_engine()
    create_all()
    with session_scope() as session:
        mdas = [models.Mda(code=code, name=name) for code, name in MDAS]
        session.add_all(mdas)
        session.flush()

        keys: dict[str, str] = {}
        supplier, keys["supplier"] = _user(session, "acme-supplies", models.Role.SUPPLIER, company="Acme Supplies Ltd")
        spv, keys["spv"] = _user(session, "harbour-spv", models.Role.SPV, company="Harbour Receivables SPV")
        _, keys["mda"] = _user(session, "fmoh-officer", models.Role.MDA, scope_id=mdas[0].id)
        _, keys["treasury"] = _user(session, "treasury-officer", models.Role.TREASURY)
        _, keys["admin"] = _user(session, "platform-admin", models.Role.ADMIN)
        session.commit()

        supplier_actor = lifecycle.Actor(user_id=supplier.id, role=models.Role.SUPPLIER)
        spv_actor = lifecycle.Actor(user_id=spv.id, role=models.Role.SPV)
        for idx, (mda, amount) in enumerate(zip(mdas, ("15000000.00", "8250000.50", "3100000.00")), start=1):
            bill = lifecycle.submit_bill(
                session,
                supplier_actor,
                BillCreate(
                    mda_id=mda.id,
                    invoice_number=f"INV-2025-{idx:03d}",
                    invoice_date=date(2025, idx, 15),
                    amount=Decimal(amount),
                    description=f"Supplies delivered to {mda.name}",
                ),
            )
            if idx == 1:
                lifecycle.make_offer(
                    session,
                    bill.id,
                    spv_actor,
                    OfferCreate(offer_amount=Decimal("13500000.00"), discount_rate=Decimal("10")),
                )

        print("Seed data inserted. API keys:")
        for role, raw in keys.items():
            print(f"    {role:<9} Authorization: Bearer {raw}")


if __name__ == "__main__":
    main()
