"""
Tests for lot_engines.fifo: rule precedence and depletion ordering.

Pure functions; no database.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

import pytest

from lot_engines.fifo import (
    FamilyScope,
    FIFORule,
    GlobalScope,
    ProductScope,
    check_compliance,
    order_lots,
    resolve_rule,
    scope_from_ids,
    select_next_lot,
)
from lot_kernel.domain.dtos import LotView

TODAY = date(2024, 3, 1)


def lot(
    lot_number: str,
    reception: date,
    *,
    expiration: date | None = None,
    remaining: str = "10",
    initial: str = "10",
    price: str | None = None,
    product_id: str = "P",
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
        expiration_date=expiration,
        unit_purchase_price=Decimal(price) if price is not None else None,
    )


def order(lots, *, tolerance=0, ignore_expired=True, price_priority=False):
    return order_lots(
        lots,
        today=TODAY,
        tolerance_days=tolerance,
        ignore_expired_lots=ignore_expired,
        price_priority=price_priority,
    )


class TestScope:

    def test_scope_from_ids(self):
        assert scope_from_ids("P1", None) == ProductScope("P1")
        assert scope_from_ids(None, "F1") == FamilyScope("F1")
        assert scope_from_ids(None, None) == GlobalScope()

    def test_both_ids_rejected(self):
        with pytest.raises(ValueError):
            scope_from_ids("P1", "F1")

    def test_labels(self):
        assert ProductScope("P1").label == "product:P1"
        assert FamilyScope("F1").label == "family:F1"
        assert GlobalScope().label == "global"

    def test_negative_tolerance_rejected(self):
        with pytest.raises(ValueError):
            FIFORule(scope=GlobalScope(), tolerance_days=-1)


class TestResolveRule:

    def _rule(self, scope, *, priority=1, seq=1, active=True):
        return FIFORule(
            scope=scope,
            priority=priority,
            creation_seq=seq,
            is_active=active,
            config_id=UUID(int=seq),
        )

    def test_product_beats_family_beats_global(self):
        glob = self._rule(GlobalScope(), priority=99, seq=1)
        fam = self._rule(FamilyScope("F"), priority=50, seq=2)
        prod = self._rule(ProductScope("P"), priority=1, seq=3)

        assert resolve_rule([glob, fam, prod], product_id="P", family_id="F") is prod
        assert resolve_rule([glob, fam], product_id="P", family_id="F") is fam
        assert resolve_rule([glob, fam], product_id="P", family_id=None) is glob
        assert resolve_rule([glob, fam], product_id="P", family_id="OTHER") is glob

    def test_highest_priority_wins_within_level(self):
        low = self._rule(GlobalScope(), priority=1, seq=1)
        high = self._rule(GlobalScope(), priority=5, seq=2)
        assert resolve_rule([high, low], product_id="P", family_id=None) is high

    def test_equal_priority_goes_to_latest_created(self):
        older = self._rule(ProductScope("P"), priority=3, seq=1)
        newer = self._rule(ProductScope("P"), priority=3, seq=7)
        assert resolve_rule([newer, older], product_id="P", family_id=None) is newer
        assert resolve_rule([older, newer], product_id="P", family_id=None) is newer

    def test_inactive_rules_never_apply(self):
        inactive = self._rule(ProductScope("P"), priority=10, seq=2, active=False)
        glob = self._rule(GlobalScope(), seq=1)
        assert resolve_rule([inactive, glob], product_id="P", family_id=None) is glob
        assert resolve_rule([inactive], product_id="P", family_id=None) is None

    def test_no_rules(self):
        assert resolve_rule([], product_id="P", family_id=None) is None


class TestOrderLots:

    def test_strict_fifo_by_reception(self):
        a = lot("A", date(2024, 1, 1))
        b = lot("B", date(2024, 1, 5))
        c = lot("C", date(2024, 1, 3))
        assert [x.lot_number for x in order([b, a, c])] == ["A", "C", "B"]

    def test_scenario_earliest_reception_without_tolerance(self):
        lot1 = lot("LOT1", date(2024, 1, 1), expiration=date(2024, 6, 1))
        lot2 = lot("LOT2", date(2024, 1, 10), expiration=date(2024, 5, 1))
        chosen = select_next_lot(
            [lot2, lot1], today=TODAY, tolerance_days=7,
            ignore_expired_lots=False, price_priority=False,
        )
        assert chosen.id == lot1.id

    @pytest.mark.parametrize("tolerance", [9, 10, 30])
    def test_scenario_tolerance_groups_by_expiration(self, tolerance):
        lot1 = lot("LOT1", date(2024, 1, 1), expiration=date(2024, 6, 1))
        lot2 = lot("LOT2", date(2024, 1, 10), expiration=date(2024, 5, 1))
        chosen = select_next_lot(
            [lot1, lot2], today=TODAY, tolerance_days=tolerance,
            ignore_expired_lots=False, price_priority=False,
        )
        assert chosen.id == lot2.id

    def test_tolerance_boundary_is_inclusive(self):
        lot1 = lot("LOT1", date(2024, 1, 1), expiration=date(2024, 6, 1))
        lot2 = lot("LOT2", date(2024, 1, 10), expiration=date(2024, 5, 1))
        assert order([lot1, lot2], tolerance=8)[0].id == lot1.id
        assert order([lot1, lot2], tolerance=9)[0].id == lot2.id

    def test_group_tie_break_smallest_remaining(self):
        big = lot("BIG", date(2024, 1, 1), expiration=date(2024, 6, 1), remaining="9")
        small = lot("SMALL", date(2024, 1, 2), expiration=date(2024, 6, 1), remaining="2")
        assert [x.lot_number for x in order([big, small], tolerance=3)] == ["SMALL", "BIG"]

    def test_lots_without_expiration_sort_last_in_group(self):
        none = lot("NONE", date(2024, 1, 1))
        dated = lot("DATED", date(2024, 1, 2), expiration=date(2024, 9, 1))
        assert [x.lot_number for x in order([none, dated], tolerance=5)] == ["DATED", "NONE"]

    def test_groups_anchor_on_earliest_remaining(self):
        # A anchors {A, B}; C is outside A's window and starts its own group.
        a = lot("A", date(2024, 1, 1), expiration=date(2024, 9, 1))
        b = lot("B", date(2024, 1, 4), expiration=date(2024, 8, 1))
        c = lot("C", date(2024, 1, 7), expiration=date(2024, 4, 1))
        assert [x.lot_number for x in order([a, b, c], tolerance=3)] == ["B", "A", "C"]

    def test_expired_lots_skipped_when_configured(self):
        expired = lot("OLD", date(2023, 12, 1), expiration=date(2024, 2, 1))
        fresh = lot("NEW", date(2024, 1, 1), expiration=date(2024, 12, 1))
        assert [x.lot_number for x in order([expired, fresh])] == ["NEW"]
        assert [x.lot_number for x in order([expired, fresh], ignore_expired=False)] == ["OLD", "NEW"]

    def test_lot_expiring_today_is_still_eligible(self):
        today_lot = lot("TODAY", date(2024, 1, 1), expiration=TODAY)
        assert order([today_lot])[0].lot_number == "TODAY"

    def test_empty_lots_never_eligible(self):
        empty = lot("EMPTY", date(2024, 1, 1), remaining="0")
        assert order([empty]) == []
        assert select_next_lot(
            [empty], today=TODAY, tolerance_days=0,
            ignore_expired_lots=False, price_priority=False,
        ) is None

    def test_price_priority_cheapest_first(self):
        cheap = lot("CHEAP", date(2024, 2, 1), price="1.50")
        dear = lot("DEAR", date(2024, 1, 1), price="4.00")
        unpriced = lot("UNPRICED", date(2023, 12, 1))
        ordered = order([dear, unpriced, cheap], price_priority=True)
        assert [x.lot_number for x in ordered] == ["CHEAP", "DEAR", "UNPRICED"]

    def test_price_priority_groups_need_same_price(self):
        a = lot("A", date(2024, 1, 1), price="2", expiration=date(2024, 9, 1))
        b = lot("B", date(2024, 1, 2), price="2", expiration=date(2024, 5, 1))
        c = lot("C", date(2024, 1, 1), price="3", expiration=date(2024, 4, 1))
        ordered = order([a, b, c], tolerance=5, price_priority=True)
        assert [x.lot_number for x in ordered] == ["B", "A", "C"]

    def test_deterministic_for_identical_lots(self):
        lots = [lot(f"N{i}", date(2024, 1, 1), expiration=date(2024, 6, 1)) for i in range(5)]
        first = order(lots, tolerance=3)
        second = order(list(reversed(lots)), tolerance=3)
        assert [x.id for x in first] == [x.id for x in second]

    def test_negative_tolerance_rejected(self):
        with pytest.raises(ValueError):
            order([lot("A", date(2024, 1, 1))], tolerance=-1)


class TestCheckCompliance:

    def test_compliant_when_expected(self):
        a = lot("A", date(2024, 1, 1))
        result = check_compliance(a, a)
        assert result.compliant
        assert result.deviation_days == 0

    def test_no_expected_lot_is_compliant(self):
        a = lot("A", date(2024, 1, 1))
        result = check_compliance(a, None)
        assert result.compliant
        assert result.expected_lot_id is None

    def test_deviation_is_signed_reception_distance(self):
        oldest = lot("OLD", date(2024, 1, 1))
        newest = lot("NEW", date(2024, 1, 15))
        result = check_compliance(newest, oldest)
        assert not result.compliant
        assert result.expected_lot_id == oldest.id
        assert result.deviation_days == 14
        assert "OLD" in result.message
