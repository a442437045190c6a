"""
Unit tests for kernel primitives: quantities, clocks, hashing and sequences.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import UUID

import pytest

from lot_kernel.db.types import as_quantity, round_money
from lot_kernel.domain.clock import DeterministicClock, SystemClock
from lot_kernel.services.sequence_service import SequenceService
from lot_kernel.utils.hashing import (
    canonicalize_json,
    hash_audit_event,
    hash_payload,
    to_json_safe,
)


class TestQuantities:

    @pytest.mark.parametrize(
        "raw, expected",
        [
            (5, "5"),
            ("2.500", "2.5"),
            (Decimal("70.000"), "70"),
            ("0.0000000004", "0"),
        ],
    )
    def test_coercion(self, raw, expected):
        assert str(as_quantity(raw)) == expected

    def test_rounds_half_up_to_nine_places(self):
        assert as_quantity("0.0000000005") == Decimal("0.000000001")

    @pytest.mark.parametrize("raw", [1.5, True])
    def test_floats_and_bools_rejected(self, raw):
        with pytest.raises(TypeError):
            as_quantity(raw)

    def test_equal_quantities_hash_alike(self):
        assert hash(as_quantity("10.0")) == hash(as_quantity(10))

    def test_money_rounds_half_up(self):
        assert round_money(Decimal("2.345")) == Decimal("2.35")
        assert round_money(Decimal("2.344")) == Decimal("2.34")


class TestClock:

    def test_deterministic_clock_is_stable(self):
        clock = DeterministicClock()
        assert clock.now() == clock.now()

    def test_set_today_is_noon_utc(self):
        clock = DeterministicClock()
        clock.set_today(date(2024, 3, 1))
        assert clock.now() == datetime(2024, 3, 1, 12, tzinfo=timezone.utc)
        assert clock.today() == date(2024, 3, 1)

    def test_advance_days_moves_today(self):
        clock = DeterministicClock()
        clock.set_today(date(2024, 2, 28))
        clock.advance_days(2)
        assert clock.today() == date(2024, 3, 1)

    def test_tick(self):
        clock = DeterministicClock()
        before = clock.now()
        assert (clock.tick() - before).total_seconds() == 1

    def test_system_clock_is_aware(self):
        assert SystemClock().now().tzinfo is not None


class TestHashing:

    def test_canonical_json_is_key_order_independent(self):
        assert canonicalize_json({"b": 1, "a": 2}) == canonicalize_json({"a": 2, "b": 1})

    def test_decimal_normalized(self):
        assert hash_payload({"q": Decimal("70")}) == hash_payload({"q": Decimal("70.000")})

    def test_json_safe_values(self):
        uid = UUID(int=7)
        assert to_json_safe({"id": uid, "on": date(2024, 3, 1), "q": Decimal("1.50")}) == {
            "id": str(uid), "on": "2024-03-01", "q": "1.5",
        }

    def test_unsupported_type(self):
        with pytest.raises(TypeError):
            canonicalize_json({"x": object()})

    def test_event_hash_depends_on_previous(self):
        first = hash_audit_event("Lot", "1", "lot_received", "p" * 64, None)
        second = hash_audit_event("Lot", "1", "lot_received", "p" * 64, first)
        assert first != second
        assert len(first) == 64


class TestSequenceService:

    def test_starts_at_one_and_increases(self, session):
        sequences = SequenceService(session)
        assert sequences.current_value("test_sequence") is None
        assert sequences.next_value("test_sequence") == 1
        assert sequences.next_value("test_sequence") == 2
        assert sequences.current_value("test_sequence") == 2

    def test_sequences_are_independent(self, session):
        sequences = SequenceService(session)
        sequences.next_value("first_sequence")
        sequences.next_value("first_sequence")
        assert sequences.next_value("second_sequence") == 1
