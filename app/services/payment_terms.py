"""Quarterly payment schedule calculator.

Everything here is pure: no session, no clock unless ``as_of`` is passed.
The lifecycle engine calls :func:`compute_schedule` on MDA approval and again
on Treasury amendments; dashboards call :func:`refresh_statuses` to re-derive
``upcoming``/``due``/``paid`` for a stored schedule.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, replace
from datetime import date
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Iterable, Mapping

from app.utils.errors import ValidationError

CENT = Decimal("0.01")
# Numeric(18, 2) leaves sixteen integer digits.
MAX_AMOUNT = Decimal("1e16")
MAX_YEAR = 9999
MAX_RATE = Decimal("100")
_QUARTER_RE = re.compile(r"^\s*Q([1-4])\s+(\d{4})\s*$", re.IGNORECASE)
_QUARTER_END = {1: (3, 31), 2: (6, 30), 3: (9, 30), 4: (12, 31)}

STATUS_UPCOMING = "upcoming"
STATUS_DUE = "due"
STATUS_PAID = "paid"


@dataclass(frozen=True)
class ScheduleEntry:
    index: int
    quarter_label: str
    amount: Decimal
    interest: Decimal
    total_due: Decimal
    due_date: date
    status: str


@dataclass(frozen=True)
class PaymentSchedule:
    principal: Decimal
    quarters: int
    start_quarter: str
    annual_rate: Decimal
    entries: tuple[ScheduleEntry, ...]

    @property
    def quarterly_amount(self) -> Decimal:
        return self.entries[0].amount

    @property
    def total_principal(self) -> Decimal:
        return sum((e.amount for e in self.entries), Decimal("0"))

    @property
    def total_interest(self) -> Decimal:
        return sum((e.interest for e in self.entries), Decimal("0"))


def parse_quarter(token: str) -> tuple[int, int]:
    """Parse ``"Q1 2025"`` into ``(1, 2025)``."""

    match = _QUARTER_RE.match(token or "")
    if not match:
        raise ValidationError(
            f"Invalid quarter token: {token!r}",
            code="INVALID_START_QUARTER",
            details={"expected": "Q<1-4> <YYYY>"},
        )
    quarter, year = int(match.group(1)), int(match.group(2))
    if year < 1:
        raise ValidationError(
            f"Invalid quarter year: {token!r}",
            code="INVALID_START_QUARTER",
            details={"year": year},
        )
    return quarter, year


def quarter_label(quarter: int, year: int) -> str:
    return f"Q{quarter} {year}"


def next_quarter(quarter: int, year: int) -> tuple[int, int]:
    if quarter == 4:
        return 1, year + 1
    return quarter + 1, year


def quarter_start(quarter: int, year: int) -> date:
    return date(year, 3 * (quarter - 1) + 1, 1)


def quarter_end(quarter: int, year: int) -> date:
    month, day = _QUARTER_END[quarter]
    return date(year, month, day)


def _as_decimal(value: Any, field: str) -> Decimal:
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError) as exc:
        raise ValidationError(f"Invalid decimal for {field}: {value!r}", code="INVALID_AMOUNT") from exc


def _validate_principal(principal: Any) -> Decimal:
    amount = _as_decimal(principal, "principal")
    if not amount.is_finite() or amount <= 0:
        raise ValidationError("Principal must be a positive amount", code="INVALID_AMOUNT")
    if amount >= MAX_AMOUNT:
        raise ValidationError("Principal exceeds the largest storable amount", code="INVALID_AMOUNT")
    if amount != amount.quantize(CENT):
        raise ValidationError("Principal cannot carry more than two decimals", code="INVALID_AMOUNT")
    return amount.quantize(CENT)


def _validate_rate(rate: Any, field: str) -> Decimal:
    value = _as_decimal(rate, field)
    if not value.is_finite() or not 0 <= value <= MAX_RATE:
        raise ValidationError(
            f"Interest rate for {field} must be between 0 and {MAX_RATE} percent",
            code="INVALID_RATE",
        )
    return value


def validate_quarter_count(quarters: Any, allowed_quarters: Iterable[int] | None = None) -> int:
    """Reject anything but a positive int from ``allowed_quarters``; never clamps."""

    if isinstance(quarters, bool) or not isinstance(quarters, int) or quarters <= 0:
        raise ValidationError(
            "Payment quarters must be a positive integer",
            code="INVALID_PAYMENT_QUARTERS",
            details={"payment_quarters": quarters},
        )
    if allowed_quarters is not None:
        allowed = sorted(set(allowed_quarters))
        if quarters not in allowed:
            raise ValidationError(
                f"Payment quarters must be one of {allowed}",
                code="INVALID_PAYMENT_QUARTERS",
                details={"payment_quarters": quarters, "allowed": allowed},
            )
    return quarters


def _entry_status(index: int, quarter: int, year: int, as_of: date | None, paid_quarters: int) -> str:
    if index <= paid_quarters:
        return STATUS_PAID
    if as_of is not None and as_of >= quarter_start(quarter, year):
        return STATUS_DUE
    return STATUS_UPCOMING


def compute_schedule(
    principal: Any,
    quarters: int,
    start_quarter: str,
    *,
    annual_rate: Any = Decimal("0"),
    rate_overrides: Mapping[int, Any] | None = None,
    as_of: date | None = None,
    paid_quarters: int = 0,
    allowed_quarters: Iterable[int] | None = None,
) -> PaymentSchedule:
    """Split ``principal`` into ``quarters`` instalments starting at ``start_quarter``.

    Principal is divided exactly in decimal and rounded down to the cent; the
    last instalment absorbs the remainder so the amounts always sum to the
    principal. ``annual_rate`` (percent) yields per-quarter interest on the
    outstanding balance; ``rate_overrides`` maps a 1-based quarter index to a
    replacement annual rate for that quarter only.
    """

    amount = _validate_principal(principal)
    count = validate_quarter_count(quarters, allowed_quarters)
    start_q, start_y = parse_quarter(start_quarter)
    last_year = start_y + (start_q - 1 + count - 1) // 4
    if last_year > MAX_YEAR:
        raise ValidationError(
            f"Schedule starting {quarter_label(start_q, start_y)} runs past {MAX_YEAR}",
            code="INVALID_START_QUARTER",
            details={"start_quarter": start_quarter, "payment_quarters": count},
        )

    base_rate = _validate_rate(annual_rate, "annual_rate")
    overrides: dict[int, Decimal] = {}
    for idx, rate in (rate_overrides or {}).items():
        if not 1 <= int(idx) <= count:
            raise ValidationError(
                f"Rate override index {idx} outside 1..{count}",
                code="INVALID_RATE",
            )
        overrides[int(idx)] = _validate_rate(rate, f"rate_overrides[{idx}]")
    if not 0 <= paid_quarters <= count:
        raise ValidationError("paid_quarters outside schedule", code="INVALID_PAID_QUARTERS")

    instalment = (amount / count).quantize(CENT, rounding=ROUND_DOWN)
    last_instalment = amount - instalment * (count - 1)

    entries: list[ScheduleEntry] = []
    outstanding = amount
    quarter, year = start_q, start_y
    for index in range(1, count + 1):
        principal_part = last_instalment if index == count else instalment
        rate = overrides.get(index, base_rate)
        interest = (outstanding * rate / Decimal(100) / Decimal(4)).quantize(CENT, rounding=ROUND_HALF_UP)
        entries.append(
            ScheduleEntry(
                index=index,
                quarter_label=quarter_label(quarter, year),
                amount=principal_part,
                interest=interest,
                total_due=principal_part + interest,
                due_date=quarter_end(quarter, year),
                status=_entry_status(index, quarter, year, as_of, paid_quarters),
            )
        )
        outstanding -= principal_part
        quarter, year = next_quarter(quarter, year)

    return PaymentSchedule(
        principal=amount,
        quarters=count,
        start_quarter=quarter_label(start_q, start_y),
        annual_rate=base_rate,
        entries=tuple(entries),
    )


def refresh_statuses(schedule: PaymentSchedule, *, as_of: date | None, paid_quarters: int = 0) -> PaymentSchedule:
    """Return ``schedule`` with entry statuses recomputed for ``as_of``."""

    refreshed = []
    for entry in schedule.entries:
        quarter, year = parse_quarter(entry.quarter_label)
        refreshed.append(replace(entry, status=_entry_status(entry.index, quarter, year, as_of, paid_quarters)))
    return replace(schedule, entries=tuple(refreshed))


def schedule_to_json(schedule: PaymentSchedule) -> dict[str, Any]:
    """Serialise for the ``bills.payment_terms_json`` column (decimals as strings)."""

    return {
        "principal": str(schedule.principal),
        "quarters": schedule.quarters,
        "start_quarter": schedule.start_quarter,
        "annual_rate": str(schedule.annual_rate),
        "quarterly_amount": str(schedule.quarterly_amount),
        "entries": [
            {
                "index": e.index,
                "quarter_label": e.quarter_label,
                "amount": str(e.amount),
                "interest": str(e.interest),
                "total_due": str(e.total_due),
                "due_date": e.due_date.isoformat(),
                "status": e.status,
            }
            for e in schedule.entries
        ],
    }


def schedule_from_json(data: Mapping[str, Any]) -> PaymentSchedule:
    return PaymentSchedule(
        principal=Decimal(data["principal"]),
        quarters=int(data["quarters"]),
        start_quarter=data["start_quarter"],
        annual_rate=Decimal(data.get("annual_rate", "0")),
        entries=tuple(
            ScheduleEntry(
                index=int(e["index"]),
                quarter_label=e["quarter_label"],
                amount=Decimal(e["amount"]),
                interest=Decimal(e["interest"]),
                total_due=Decimal(e["total_due"]),
                due_date=date.fromisoformat(e["due_date"]),
                status=e["status"],
            )
            for e in data["entries"]
        ),
    )


__all__ = [
    "MAX_AMOUNT",
    "ScheduleEntry",
    "PaymentSchedule",
    "parse_quarter",
    "quarter_label",
    "next_quarter",
    "quarter_start",
    "quarter_end",
    "validate_quarter_count",
    "compute_schedule",
    "refresh_statuses",
    "schedule_to_json",
    "schedule_from_json",
]
