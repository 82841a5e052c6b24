"""
Discrepancy calculator tests.

Verifies:
- delta = counted - system for every counted product with a difference
- zero-delta products are dropped
- a missing ledger record counts as system quantity 0
- counted line validation
"""

import pytest

from stockrecon.services.discrepancy_service import (
    CountedLine,
    compute_discrepancies,
    normalize_counted_lines,
)
from stockrecon.services.errors import ValidationError


class TestComputeDiscrepancies:

    def test_reports_only_non_zero_deltas(self, branch, products, set_stock):
        cola, water, chips = products
        set_stock(cola, branch, 10)
        set_stock(water, branch, 4)
        set_stock(chips, branch, 8)

        lines = compute_discrepancies(branch.id, [
            CountedLine(cola.id, 7),
            CountedLine(water.id, 4),
            CountedLine(chips.id, 11),
        ])

        assert [(l.product_id, l.system_quantity, l.counted_quantity, l.delta) for l in lines] == [
            (cola.id, 10, 7, -3),
            (chips.id, 8, 11, 3),
        ]

    def test_missing_ledger_record_is_zero(self, branch, products):
        cola = products[0]

        lines = compute_discrepancies(branch.id, [CountedLine(cola.id, 5)])

        assert len(lines) == 1
        assert lines[0].system_quantity == 0
        assert lines[0].delta == 5

    def test_counting_zero_of_unstocked_product_is_no_discrepancy(self, branch, products):
        assert compute_discrepancies(branch.id, [CountedLine(products[0].id, 0)]) == []

    def test_reads_only_the_given_branch(self, branch, other_branch, products, set_stock):
        cola = products[0]
        set_stock(cola, other_branch, 12)

        lines = compute_discrepancies(branch.id, [CountedLine(cola.id, 12)])

        assert lines[0].system_quantity == 0
        assert lines[0].delta == 12

    def test_carries_line_notes(self, branch, products):
        lines = compute_discrepancies(branch.id, [CountedLine(products[0].id, 2, note="two crushed")])
        assert lines[0].note == "two crushed"

    def test_empty_count(self, branch):
        assert compute_discrepancies(branch.id, []) == []


class TestNormalizeCountedLines:

    def test_accepts_dicts_and_numeric_strings(self):
        lines = normalize_counted_lines([
            {"product_id": 1, "counted_quantity": 3},
            {"product_id": "2", "counted_quantity": "0", "note": "empty shelf"},
        ])
        assert lines == [CountedLine(1, 3), CountedLine(2, 0, "empty shelf")]

    def test_none_is_empty(self):
        assert normalize_counted_lines(None) == []

    @pytest.mark.parametrize(
        "raw",
        [
            [{"product_id": 1, "counted_quantity": -1}],
            [{"product_id": 1}],
            [{"product_id": 1, "counted_quantity": 2.5}],
            [{"product_id": 1, "counted_quantity": True}],
            [{"product_id": 1, "counted_quantity": 1}, {"product_id": 1, "counted_quantity": 2}],
            ["not-an-object"],
            {"product_id": 1, "counted_quantity": 1},
        ],
    )
    def test_rejects_malformed_lines(self, raw):
        with pytest.raises(ValidationError):
            normalize_counted_lines(raw)

    @pytest.mark.parametrize("quantity", ["--3", "1.5", "²", "", "-", "3-", "٣"])
    def test_rejects_non_integer_strings(self, quantity):
        with pytest.raises(ValidationError):
            normalize_counted_lines([{"product_id": 1, "counted_quantity": quantity}])

    def test_accepts_padded_integer_strings(self):
        assert normalize_counted_lines([{"product_id": " 7 ", "counted_quantity": " 12 "}]) == [CountedLine(7, 12)]
