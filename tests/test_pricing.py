from datetime import datetime, timedelta, timezone

import pytest

from pricing import calc_taxes, delivery_charge, final_price, round_half_up, summarize


NOW = datetime(2025, 6, 1, tzinfo=timezone.utc)


class TestFinalPrice:
    def test_no_discount(self):
        assert final_price({"price": 120}, NOW) == 120

    def test_active_discount(self):
        product = {"price": 200, "discount": {"percentage": 10, "valid_till": NOW + timedelta(days=1)}}
        assert final_price(product, NOW) == 180

    def test_expired_discount(self):
        product = {"price": 200, "discount": {"percentage": 10, "valid_till": NOW - timedelta(seconds=1)}}
        assert final_price(product, NOW) == 200

    def test_discount_ends_at_expiry_instant(self):
        product = {"price": 200, "discount": {"percentage": 10, "valid_till": NOW}}
        assert final_price(product, NOW) == 200

    def test_discount_without_expiry_is_ignored(self):
        assert final_price({"price": 200, "discount": {"percentage": 50}}, NOW) == 200

    def test_naive_expiry_treated_as_utc(self):
        product = {"price": 100, "discount": {"percentage": 25, "valid_till": datetime(2025, 6, 2)}}
        assert final_price(product, NOW) == 75


class TestSummary:
    @pytest.mark.parametrize("subtotal,expected", [(0, 0), (200, 50), (500, 50), (500.01, 0), (1200, 0)])
    def test_delivery_threshold(self, subtotal, expected):
        assert delivery_charge(subtotal) == expected

    def test_taxes_round_half_up(self):
        assert round_half_up(2.5) == 3
        assert calc_taxes(10) == 1  # 0.5 rounds up
        assert calc_taxes(200) == 10

    def test_two_units_scenario(self):
        assert summarize([200]) == {"subtotal": 200, "delivery_charges": 50, "taxes": 10, "total": 260}

    def test_free_delivery_above_threshold(self):
        summary = summarize([300, 300])
        assert summary["delivery_charges"] == 0
        assert summary["taxes"] == 30
        assert summary["total"] == 630
