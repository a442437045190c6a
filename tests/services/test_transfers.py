"""
Transfers between lots and lot splits.

Both legs share a reference id and are written together or not at all.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from lot_kernel.exceptions import (
    DuplicateLotNumberError,
    InvalidQuantityError,
    InvalidTransferError,
    LotNotFoundError,
    QuantityOutOfBoundsError,
)
from lot_kernel.models.audit_event import AuditAction
from lot_kernel.models.movement import MovementType, ReferenceType


@pytest.fixture
def source(make_lot):
    return make_lot("PARA-500", 50, storage_location="SHELF-A", unit_purchase_price="2.00")


@pytest.fixture
def partly_sold(make_lot, stock_service):
    lot = make_lot("PARA-500", 50, storage_location="SHELF-B")
    stock_service.apply_movement(lot.id, "exit", -20)
    return stock_service.get_lot(lot.id)


class TestTransferBetweenLots:

    def test_two_legs_share_reference(self, source, partly_sold, stock_service):
        result = stock_service.transfer_movement(source.id, partly_sold.id, 15, "MOVE-1")

        assert result.reference_id == "MOVE-1"
        assert not result.created_lot
        assert result.out_movement.signed_quantity == Decimal(-15)
        assert result.in_movement.signed_quantity == Decimal(15)
        for leg in (result.out_movement, result.in_movement):
            assert leg.movement_type == MovementType.TRANSFER.value
            assert leg.reference_type == ReferenceType.TRANSFER.value
            assert leg.reference_id == "MOVE-1"
        assert result.out_movement.metadata == {
            "leg": "out", "counterpart_lot_id": str(partly_sold.id),
        }
        assert result.in_movement.metadata == {
            "leg": "in", "counterpart_lot_id": str(source.id),
        }

        assert stock_service.get_lot(source.id).remaining_quantity == Decimal(35)
        assert stock_service.get_lot(partly_sold.id).remaining_quantity == Decimal(45)

    def test_reference_generated_when_missing(self, source, partly_sold, stock_service):
        result = stock_service.transfer_movement(source.id, partly_sold.id, 1)
        assert result.reference_id
        assert result.out_movement.reference_id == result.in_movement.reference_id

    def test_destination_over_initial_rejects_both_legs(self, source, partly_sold, stock_service):
        # partly_sold has room for 20 only.
        with pytest.raises(QuantityOutOfBoundsError):
            stock_service.transfer_movement(source.id, partly_sold.id, 21)

        assert stock_service.get_lot(source.id).remaining_quantity == Decimal(50)
        assert stock_service.get_lot(partly_sold.id).remaining_quantity == Decimal(30)
        assert len(stock_service.list_movements(source.id).to_list()) == 1

    def test_source_overdraw_rejected(self, source, partly_sold, stock_service):
        with pytest.raises(QuantityOutOfBoundsError):
            stock_service.transfer_movement(partly_sold.id, source.id, 31)
        assert stock_service.get_lot(partly_sold.id).remaining_quantity == Decimal(30)

    def test_same_lot_rejected(self, source, stock_service):
        with pytest.raises(InvalidTransferError):
            stock_service.transfer_movement(source.id, source.id, 1)

    def test_other_product_rejected(self, source, make_lot, stock_service):
        other = make_lot("IBU-400", 50)
        stock_service.apply_movement(other.id, "exit", -10)
        with pytest.raises(InvalidTransferError):
            stock_service.transfer_movement(source.id, other.id, 5)

    @pytest.mark.parametrize("quantity", [0, -3])
    def test_non_positive_quantity_rejected(self, source, partly_sold, stock_service, quantity):
        with pytest.raises(InvalidQuantityError):
            stock_service.transfer_movement(source.id, partly_sold.id, quantity)

    def test_unknown_destination(self, source, stock_service):
        with pytest.raises(LotNotFoundError):
            stock_service.transfer_movement(source.id, uuid4(), 1)

    def test_transfer_is_audited(self, source, partly_sold, stock_service, auditor_service):
        stock_service.transfer_movement(source.id, partly_sold.id, 5, "MOVE-2")
        trace = auditor_service.get_trace("Lot", source.id)
        assert trace.last_action == AuditAction.TRANSFER_RECORDED
        assert trace.entries[-1].payload["reference_id"] == "MOVE-2"
        assert trace.entries[-1].payload["created_lot"] is False


class TestSplit:

    def test_split_creates_lot_at_location(self, source, stock_service):
        result = stock_service.transfer_movement(source.id, None, 12, to_location="FRIDGE-2")

        assert result.created_lot
        created = result.destination_lot
        assert created.storage_location == "FRIDGE-2"
        assert created.product_id == source.product_id
        assert created.initial_quantity == Decimal(12)
        assert created.remaining_quantity == Decimal(12)
        assert created.reception_date == source.reception_date
        assert created.expiration_date == source.expiration_date
        assert created.unit_purchase_price == source.unit_purchase_price
        assert created.lot_number == f"{source.lot_number}-S{result.out_movement.ledger_seq}"

        (opening,) = stock_service.list_movements(created.id).to_list()
        assert opening.is_opening
        assert opening.movement_type == MovementType.TRANSFER.value

        assert stock_service.get_lot(source.id).remaining_quantity == Decimal(38)
        assert stock_service.verify_invariants() == []

    def test_split_with_explicit_lot_number(self, source, stock_service):
        result = stock_service.transfer_movement(
            source.id, None, 5, to_location="FRIDGE-2", to_lot_number="SPLIT-A"
        )
        assert result.destination_lot.lot_number == "SPLIT-A"

    def test_split_lot_number_must_be_free(self, source, stock_service):
        with pytest.raises(DuplicateLotNumberError):
            stock_service.transfer_movement(
                source.id, None, 5, to_location="FRIDGE-2", to_lot_number=source.lot_number
            )
        assert stock_service.get_lot(source.id).remaining_quantity == Decimal(50)

    def test_split_needs_location(self, source, stock_service):
        with pytest.raises(InvalidTransferError):
            stock_service.transfer_movement(source.id, None, 5)

    def test_split_whole_lot_depletes_source(self, source, stock_service):
        stock_service.transfer_movement(source.id, None, 50, to_location="FRIDGE-2")
        assert stock_service.get_lot(source.id).status == "depleted"
