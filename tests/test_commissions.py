"""Tests for commission calculation."""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from affiliate_engine.affiliates.models import AffiliateLevel
from affiliate_engine.commissions.calculator import commission_amount
from affiliate_engine.commissions.models import Commission, CommissionStatus
from affiliate_engine.errors import InvalidAmount, NoAttribution


def _now() -> datetime:
    return datetime(2026, 3, 2, 12, 0, 0)


class TestCommissionAmount:
    def test_simple_percentage(self) -> None:
        assert commission_amount(Decimal("100.00"), Decimal("25")) == Decimal("25.00")

    def test_rounds_half_up_to_cents(self) -> None:
        # 19.99 * 25% = 4.9975
        assert commission_amount(Decimal("19.99"), Decimal("25")) == Decimal("5.00")
        # 0.10 * 25% = 0.025
        assert commission_amount(Decimal("0.10"), Decimal("25")) == Decimal("0.03")

    def test_rounds_down_below_half(self) -> None:
        # 10.01 * 25% = 2.5025
        assert commission_amount(Decimal("10.01"), Decimal("25")) == Decimal("2.50")


class TestComputeCommission:
    def test_bronze_default_rate(self, engine, database, make_affiliate, refer) -> None:
        affiliate = make_affiliate()
        refer(affiliate, "author-1")

        commission_id = engine.compute_commission(
            affiliate.id, "author-1", "author_registration", "reg-1", Decimal("100.00"), now=_now()
        )

        with database.session() as session:
            commission = session.get(Commission, commission_id)
        assert commission.status == CommissionStatus.WAITING.value
        assert commission.commission_rate == Decimal("25.00")
        assert commission.amount == Decimal("25.00")
        assert commission.base_price == Decimal("100.00")
        assert commission.created_at == _now()
        assert commission.paid_in_withdrawal_id is None

    def test_custom_rate_overrides_level(self, engine, database, make_affiliate, refer) -> None:
        affiliate = make_affiliate(custom_rate="30")
        refer(affiliate, "author-1")

        commission_id = engine.compute_commission(
            affiliate.id, "author-1", "author_registration", "reg-1", Decimal("100.00"), now=_now()
        )

        with database.session() as session:
            assert session.get(Commission, commission_id).amount == Decimal("30.00")

    def test_silver_level_rate(self, engine, database, make_affiliate, refer) -> None:
        affiliate = make_affiliate()
        engine.affiliates.set_level(affiliate.id, AffiliateLevel.SILVER)
        refer(affiliate, "author-1")

        commission_id = engine.compute_commission(
            affiliate.id, "author-1", "subscription", "sub-1", Decimal("80.00"), now=_now()
        )

        with database.session() as session:
            assert session.get(Commission, commission_id).amount == Decimal("40.00")

    def test_rate_snapshot_survives_rate_change(self, engine, database, make_affiliate, refer) -> None:
        affiliate = make_affiliate()
        refer(affiliate, "author-1")
        commission_id = engine.compute_commission(
            affiliate.id, "author-1", "subscription", "sub-1", Decimal("100.00"), now=_now()
        )

        engine.affiliates.set_custom_rate(affiliate.id, Decimal("60"))

        with database.session() as session:
            assert session.get(Commission, commission_id).amount == Decimal("25.00")

    def test_same_event_is_idempotent(self, engine, database, make_affiliate, refer, published) -> None:
        affiliate = make_affiliate()
        refer(affiliate, "author-1")

        first = engine.compute_commission(
            affiliate.id, "author-1", "author_registration", "reg-1", Decimal("100.00"), now=_now()
        )
        second = engine.compute_commission(
            affiliate.id, "author-1", "author_registration", "reg-1", Decimal("100.00"),
            now=_now() + timedelta(hours=1),
        )

        assert first == second
        with database.session() as session:
            assert session.query(Commission).count() == 1
        assert len([e for e in published if e.name == "commission_created"]) == 1

    def test_same_reference_different_type_is_separate(self, engine, database, make_affiliate, refer) -> None:
        affiliate = make_affiliate()
        refer(affiliate, "author-1")

        first = engine.compute_commission(
            affiliate.id, "author-1", "author_registration", "ref-1", Decimal("100.00"), now=_now()
        )
        second = engine.compute_commission(
            affiliate.id, "author-1", "subscription", "ref-1", Decimal("100.00"), now=_now()
        )
        assert first != second

    def test_unattributed_user_rejected(self, engine, make_affiliate) -> None:
        affiliate = make_affiliate()
        with pytest.raises(NoAttribution) as exc_info:
            engine.compute_commission(
                affiliate.id, "stranger", "author_registration", "reg-1", Decimal("100.00"), now=_now()
            )
        assert exc_info.value.user_id == "stranger"

    def test_user_of_another_affiliate_rejected(self, engine, make_affiliate, refer) -> None:
        owner = make_affiliate("Ana")
        other = make_affiliate("Bruno")
        refer(owner, "author-1")
        with pytest.raises(NoAttribution):
            engine.compute_commission(
                other.id, "author-1", "author_registration", "reg-1", Decimal("100.00"), now=_now()
            )

    @pytest.mark.parametrize("price", ["0", "-10.00"])
    def test_non_positive_price_rejected(self, engine, make_affiliate, refer, price) -> None:
        affiliate = make_affiliate()
        refer(affiliate, "author-1")
        with pytest.raises(InvalidAmount):
            engine.compute_commission(
                affiliate.id, "author-1", "subscription", "sub-1", Decimal(price), now=_now()
            )

    def test_unknown_event_type_rejected(self, engine, make_affiliate, refer) -> None:
        affiliate = make_affiliate()
        refer(affiliate, "author-1")
        with pytest.raises(ValueError):
            engine.compute_commission(
                affiliate.id, "author-1", "donation", "don-1", Decimal("10.00"), now=_now()
            )

    def test_commission_counts_as_pending_balance(self, engine, make_affiliate, refer) -> None:
        affiliate = make_affiliate()
        refer(affiliate, "author-1")
        engine.compute_commission(
            affiliate.id, "author-1", "author_registration", "reg-1", Decimal("100.00"), now=_now()
        )

        balance = engine.get_affiliate_balance(affiliate.id)
        assert balance.pending == Decimal("25.00")
        assert balance.available == Decimal("0.00")
        assert balance.total_earnings == Decimal("0.00")
