# Overview: Discrepancy Calculator; diffs counted quantities against the stock ledger.

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Optional

from . import stock_ledger_service
from .errors import ValidationError


@dataclass(frozen=True)
class CountedLine:
    """A product's physically counted quantity, as captured on the floor."""
    product_id: int
    counted_quantity: int
    note: Optional[str] = None


@dataclass(frozen=True)
class DiscrepancyLine:
    product_id: int
    system_quantity: int
    counted_quantity: int
    delta: int
    note: Optional[str] = None


_INTEGER_RE = re.compile(r"-?[0-9]+")


def coerce_int(value, field: str) -> int:
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and _INTEGER_RE.fullmatch(value.strip()):
        return int(value.strip())
    raise ValidationError(f"{field} must be an integer")


def normalize_counted_lines(raw_lines) -> list[CountedLine]:
    """
    Validate client-supplied counted lines.

    Accepts CountedLine instances or dicts with product_id, counted_quantity
    and an optional note. Counts must be non-negative and a product may only
    appear once.
    """
    if raw_lines is None:
        return []
    if not isinstance(raw_lines, (list, tuple)):
        raise ValidationError("counted_lines must be a list")

    lines: list[CountedLine] = []
    seen: set[int] = set()
    for index, raw in enumerate(raw_lines):
        if isinstance(raw, CountedLine):
            line = raw
        elif isinstance(raw, dict):
            if "product_id" not in raw or "counted_quantity" not in raw:
                raise ValidationError(f"counted_lines[{index}] requires product_id and counted_quantity")
            note = raw.get("note")
            line = CountedLine(
                product_id=coerce_int(raw["product_id"], f"counted_lines[{index}].product_id"),
                counted_quantity=coerce_int(raw["counted_quantity"], f"counted_lines[{index}].counted_quantity"),
                note=str(note)[:255] if note else None,
            )
        else:
            raise ValidationError(f"counted_lines[{index}] must be an object")

        if line.counted_quantity < 0:
            raise ValidationError(f"Counted quantity for product {line.product_id} cannot be negative")
        if line.product_id in seen:
            raise ValidationError(f"Product {line.product_id} counted more than once")
        seen.add(line.product_id)
        lines.append(line)

    return lines


def compute_discrepancies(branch_id: int, counted_lines: Iterable[CountedLine]) -> list[DiscrepancyLine]:
    """
    Diff counted quantities against the ledger for one branch.

    A product with no ledger record has a system quantity of 0. Products whose
    count matches the ledger are dropped: only true discrepancies come back,
    in the order they were counted. Read-only; ledger read errors propagate.
    """
    counted_lines = list(counted_lines)
    system = stock_ledger_service.get_quantities(branch_id, [line.product_id for line in counted_lines])

    discrepancies = []
    for line in counted_lines:
        system_quantity = system.get(line.product_id, 0)
        delta = line.counted_quantity - system_quantity
        if delta == 0:
            continue
        discrepancies.append(
            DiscrepancyLine(
                product_id=line.product_id,
                system_quantity=system_quantity,
                counted_quantity=line.counted_quantity,
                delta=delta,
                note=line.note,
            )
        )
    return discrepancies
