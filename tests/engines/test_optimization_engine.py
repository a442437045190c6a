"""
Tests for lot_engines.optimization rule evaluation.
"""

from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from lot_engines.optimization import (
    EXPIRATION_OPTIMIZATION,
    FIFO_COMPLIANCE,
    STOCK_BALANCING,
    VALUE_OPTIMIZATION,
    OptimizationRule,
    SuggestionPriority,
    SuggestionType,
    suggest_optimizations,
)
from lot_kernel.domain.dtos import LotView

TODAY = date(2024, 3, 1)


def lot(
    lot_number,
    *,
    initial="100",
    remaining="100",
    reception=date(2024, 2, 1),
    expires_in=None,
    location=None,
    price="2",
    product_id="PARA-500",
) -> LotView:
    return LotView(
        id=uuid4(),
        tenant_id="default",
        product_id=product_id,
        lot_number=lot_number,
        initial_quantity=Decimal(initial),
        remaining_quantity=Decimal(remaining),
        reception_date=reception,
        status="active",
        expiration_date=TODAY + timedelta(days=expires_in) if expires_in is not None else None,
        unit_purchase_price=Decimal(price),
        storage_location=location,
    )


class TestExpirationRule:

    RULE = OptimizationRule(EXPIRATION_OPTIMIZATION)

    @pytest.mark.parametrize(
        "days, priority",
        [(0, SuggestionPriority.HIGH), (7, SuggestionPriority.HIGH),
         (15, SuggestionPriority.MEDIUM), (30, SuggestionPriority.LOW)],
    )
    def test_priority_bands(self, days, priority):
        (suggestion,) = suggest_optimizations([lot("A", expires_in=days)], [self.RULE], today=TODAY)
        assert suggestion.suggestion_type is SuggestionType.PROMOTION
        assert suggestion.priority is priority
        assert suggestion.expected_benefit == Decimal(200)

    def test_far_expired_and_undated_lots_ignored(self):
        lots = [lot("FAR", expires_in=31), lot("GONE", expires_in=-1), lot("NONE")]
        assert suggest_optimizations(lots, [self.RULE], today=TODAY) == []


class TestFifoRule:

    def test_suggests_expected_lot_when_not_oldest(self):
        old = lot("OLD", reception=date(2024, 1, 1))
        new = lot("NEW", reception=date(2024, 1, 5))
        (suggestion,) = suggest_optimizations(
            [old, new],
            [OptimizationRule(FIFO_COMPLIANCE)],
            today=TODAY,
            fifo_expected={"PARA-500": new.id},
        )
        assert suggestion.lot_id == new.id
        assert suggestion.suggestion_type is SuggestionType.ADJUSTMENT
        assert suggestion.details["oldest_lot_id"] == str(old.id)

    def test_nothing_when_oldest_is_expected(self):
        old = lot("OLD", reception=date(2024, 1, 1))
        new = lot("NEW", reception=date(2024, 1, 5))
        assert suggest_optimizations(
            [old, new], [OptimizationRule(FIFO_COMPLIANCE)], today=TODAY,
            fifo_expected={"PARA-500": old.id},
        ) == []

    def test_skipped_without_expectations(self):
        old = lot("OLD", reception=date(2024, 1, 1))
        assert suggest_optimizations([old], [OptimizationRule(FIFO_COMPLIANCE)], today=TODAY) == []


class TestBalancingRule:

    RULE = OptimizationRule(STOCK_BALANCING)

    def test_transfer_from_sibling_location(self):
        low = lot("LOW", remaining="5", location="SHELF-A")
        full = lot("FULL", remaining="90", location="SHELF-B")
        (suggestion,) = suggest_optimizations([low, full], [self.RULE], today=TODAY)
        assert suggestion.lot_id == low.id
        assert suggestion.suggestion_type is SuggestionType.TRANSFER
        assert suggestion.details["source_lot_id"] == str(full.id)
        # Source keeps half its initial quantity: 90 - 50 = 40.
        assert suggestion.details["quantity"] == Decimal(40)

    def test_reorder_when_no_sibling(self):
        low = lot("LOW", remaining="5", location="SHELF-A")
        (suggestion,) = suggest_optimizations([low], [self.RULE], today=TODAY)
        assert suggestion.suggestion_type is SuggestionType.REORDER
        assert suggestion.priority is SuggestionPriority.HIGH

    def test_empty_lots_ignored(self):
        assert suggest_optimizations([lot("EMPTY", remaining="0")], [self.RULE], today=TODAY) == []


class TestValueRule:

    def test_slow_mover(self):
        slow = lot("SLOW", remaining="99", reception=date(2023, 12, 1))
        (suggestion,) = suggest_optimizations(
            [slow], [OptimizationRule(VALUE_OPTIMIZATION)], today=TODAY
        )
        assert suggestion.priority is SuggestionPriority.LOW

    def test_recent_lot_ignored(self):
        recent = lot("RECENT", remaining="99", reception=date(2024, 2, 20))
        assert suggest_optimizations(
            [recent], [OptimizationRule(VALUE_OPTIMIZATION)], today=TODAY
        ) == []


class TestRuleSet:

    def test_inactive_rules_contribute_nothing(self):
        rules = [OptimizationRule(EXPIRATION_OPTIMIZATION, is_active=False)]
        assert suggest_optimizations([lot("A", expires_in=3)], rules, today=TODAY) == []

    def test_unknown_rule_rejected(self):
        with pytest.raises(ValueError):
            suggest_optimizations([], [OptimizationRule("bogus")], today=TODAY)

    def test_sorted_high_priority_first(self):
        rules = [OptimizationRule(EXPIRATION_OPTIMIZATION)]
        lots = [lot("LATE", expires_in=25), lot("SOON", expires_in=2), lot("MID", expires_in=12)]
        result = suggest_optimizations(lots, rules, today=TODAY)
        assert [s.lot_number for s in result] == ["SOON", "MID", "LATE"]
