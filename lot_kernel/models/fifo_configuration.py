"""
Module: lot_kernel.models.fifo_configuration
Responsibility: ORM persistence for FIFO depletion rules and for the
    expiration thresholds that override tenant-level alert settings.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    F1 -- At most one of product_id / family_id is set (neither = global).
    F2 -- tolerance_days >= 0 and alert_threshold_days >= 0.
    E1 -- An expiration parameter targets exactly one of product / family,
          with 0 <= critical_days <= alert_days <= warning_days.

Failure modes:
    - IntegrityError when a CHECK constraint is violated.  Services validate
      first and raise InvalidConfigurationScopeError / ValueError.
"""

from __future__ import annotations

from sqlalchemy import Boolean, CheckConstraint, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from lot_kernel.db.base import TimestampedBase


class FIFOConfiguration(TimestampedBase):
    """
    FIFO rule set scoped to a product, a product family, or the whole tenant.

    Contract:
        Resolution precedence is product > family > global; within a level
        the highest ``priority`` wins, then the most recently created row.
    """

    __tablename__ = "fifo_configurations"

    __table_args__ = (
        CheckConstraint(
            "product_id IS NULL OR family_id IS NULL",
            name="ck_fifo_config_single_scope",
        ),
        CheckConstraint("tolerance_days >= 0", name="ck_fifo_config_tolerance"),
        CheckConstraint("alert_threshold_days >= 0", name="ck_fifo_config_alert"),
        Index("idx_fifo_config_tenant_active", "tenant_id", "is_active"),
    )

    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False)

    product_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    family_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    tolerance_days: Mapped[int] = mapped_column(Integer, nullable=False, default=7)

    alert_threshold_days: Mapped[int] = mapped_column(Integer, nullable=False, default=30)

    ignore_expired_lots: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    price_priority: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    auto_action: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Monotonic creation order; breaks ties between rows created in the same instant
    creation_seq: Mapped[int] = mapped_column(nullable=False)

    @property
    def scope_label(self) -> str:
        if self.product_id is not None:
            return "product"
        if self.family_id is not None:
            return "family"
        return "global"

    def __repr__(self) -> str:
        return f"<FIFOConfiguration {self.scope_label} priority={self.priority}>"


class ExpirationParameter(TimestampedBase):
    """Per-product or per-family expiration thresholds (days)."""

    __tablename__ = "expiration_parameters"

    __table_args__ = (
        CheckConstraint(
            "(product_id IS NULL) <> (family_id IS NULL)",
            name="ck_expiration_param_single_scope",
        ),
        CheckConstraint(
            "critical_days >= 0 AND critical_days <= alert_days AND alert_days <= warning_days",
            name="ck_expiration_param_ordering",
        ),
        Index("idx_expiration_param_tenant", "tenant_id", "is_active"),
    )

    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False)

    product_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    family_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    critical_days: Mapped[int] = mapped_column(Integer, nullable=False)

    alert_days: Mapped[int] = mapped_column(Integer, nullable=False)

    warning_days: Mapped[int] = mapped_column(Integer, nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
