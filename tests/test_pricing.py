"""Tests for PricingResolver precedence."""

from datetime import date, timedelta
from decimal import Decimal

from app.models.product import CustomPrice
from app.services.pricing import PriceRule


def _custom_price(session, product, price, user=None, group=None, min_quantity=1, start=None, end=None):
    row = CustomPrice(
        product_id=product.id,
        user_id=user.id if user else None,
        group_id=group.id if group else None,
        price=Decimal(price),
        min_quantity=min_quantity,
        start_date=start,
        end_date=end,
    )
    session.add(row)
    session.commit()
    return row


class TestPricePrecedence:
    def test_base_price_without_rules(self, session, services, buyer, make_product):
        product = make_product(base_price="100.00")
        quote = services.pricing.quote(session, buyer.id, product)
        assert quote.unit_price == Decimal("100.00")
        assert quote.rule == PriceRule.BASE_PRICE

    def test_user_price_beats_group_price(self, session, services, buyer, make_product, make_group):
        product = make_product(base_price="100.00")
        group = make_group(buyer, discount="10.00")
        _custom_price(session, product, "95.00", group=group)
        _custom_price(session, product, "90.00", user=buyer)

        quote = services.pricing.quote(session, buyer.id, product)
        assert quote.unit_price == Decimal("90.00")
        assert quote.rule == PriceRule.USER_PRICE

    def test_group_price_beats_group_discount(self, session, services, buyer, make_product, make_group):
        product = make_product(base_price="100.00")
        group = make_group(buyer, discount="10.00")
        _custom_price(session, product, "95.00", group=group)

        quote = services.pricing.quote(session, buyer.id, product)
        assert quote.unit_price == Decimal("95.00")
        assert quote.rule == PriceRule.GROUP_PRICE

    def test_lowest_group_price_across_groups(self, session, services, buyer, make_product, make_group):
        product = make_product(base_price="100.00")
        dealers = make_group(buyer, name="Dealers")
        wholesale = make_group(buyer, name="Wholesale")
        _custom_price(session, product, "96.00", group=dealers)
        _custom_price(session, product, "93.00", group=wholesale)

        assert services.pricing.resolve_price(session, buyer.id, product) == Decimal("93.00")

    def test_group_discount_applies_to_base(self, session, services, buyer, make_product, make_group):
        product = make_product(base_price="100.00")
        make_group(buyer, discount="10.00")

        quote = services.pricing.quote(session, buyer.id, product)
        assert quote.unit_price == Decimal("90.00")
        assert quote.rule == PriceRule.GROUP_DISCOUNT
        assert quote.base_price == Decimal("100.00")

    def test_highest_discount_wins(self, session, services, buyer, make_product, make_group):
        product = make_product(base_price="80.00")
        make_group(buyer, discount="5.00", name="Small")
        make_group(buyer, discount="12.50", name="Big")

        assert services.pricing.resolve_price(session, buyer.id, product) == Decimal("70.00")

    def test_inactive_group_is_ignored(self, session, services, buyer, make_product, make_group):
        product = make_product(base_price="100.00")
        group = make_group(buyer, discount="10.00", active=False)
        _custom_price(session, product, "50.00", group=group)

        quote = services.pricing.quote(session, buyer.id, product)
        assert quote.rule == PriceRule.BASE_PRICE
        assert quote.unit_price == Decimal("100.00")


class TestPriceConditions:
    def test_quantity_tiers(self, session, services, buyer, make_product):
        product = make_product(base_price="100.00")
        _custom_price(session, product, "90.00", user=buyer, min_quantity=1)
        _custom_price(session, product, "80.00", user=buyer, min_quantity=10)

        assert services.pricing.resolve_price(session, buyer.id, product, 5) == Decimal("90.00")
        assert services.pricing.resolve_price(session, buyer.id, product, 10) == Decimal("80.00")

    def test_price_below_min_quantity_does_not_apply(self, session, services, buyer, make_product):
        product = make_product(base_price="100.00")
        _custom_price(session, product, "70.00", user=buyer, min_quantity=20)

        assert services.pricing.resolve_price(session, buyer.id, product, 19) == Decimal("100.00")

    def test_date_window_is_inclusive(self, session, services, buyer, make_product):
        product = make_product(base_price="100.00")
        today = date(2026, 3, 15)
        _custom_price(session, product, "85.00", user=buyer, start=today, end=today)

        assert services.pricing.resolve_price(session, buyer.id, product, 1, today) == Decimal("85.00")
        later = today + timedelta(days=1)
        assert services.pricing.resolve_price(session, buyer.id, product, 1, later) == Decimal("100.00")

    def test_other_buyers_price_is_not_used(self, session, services, buyer, make_buyer, make_product):
        product = make_product(base_price="100.00")
        other = make_buyer(company_name="Other Co")
        _custom_price(session, product, "60.00", user=other)

        assert services.pricing.resolve_price(session, buyer.id, product) == Decimal("100.00")
