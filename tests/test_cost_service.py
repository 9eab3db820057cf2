from decimal import Decimal

import pytest

from storyprint.exceptions import InvalidOrderRequestError, ShippingLevelUnavailableError
from storyprint.services.cost_service import CostService, apply_markup, credits_for


def test_quote_applies_markups_and_rounds_to_credits(cost_service, address):
    quote = cost_service.quote(32, 1, address, "MAIL")

    # 10.00 * 2 + 4.00 * 1.05 = 24.20 at 0.01 per credit
    assert quote.total_cost == Decimal("24.20")
    assert quote.total_cost_credits == 2420
    assert quote.provider_cost == Decimal("14.00")
    assert quote.currency == "USD"


def test_fees_count_towards_print_cost(cost_service, provider, address):
    provider.fees_cost = Decimal("1.00")

    quote = cost_service.quote(32, 1, address, "MAIL")

    assert quote.provider_print_cost == Decimal("11.00")
    assert quote.total_cost_credits == 2620


def test_fractional_credit_is_rounded_up(provider, address):
    provider.print_cost = Decimal("10.001")
    provider.shipping_cost = Decimal("0")
    service = CostService(provider, Decimal("0"), Decimal("0"), Decimal("0.01"), 100)

    assert service.quote(32, 1, address, "MAIL").total_cost_credits == 1001


def test_public_view_hides_provider_cost_and_markups(cost_service, address):
    public = cost_service.quote(32, 1, address, "MAIL").public()

    assert public["total_cost"] == "24.20"
    assert public["total_cost_credits"] == 2420
    assert "provider_print_cost" not in public
    assert "print_markup_percentage" not in public


def test_unavailable_tier_lists_exactly_the_offered_tiers(cost_service, provider, address):
    provider.levels = ["MAIL", "GROUND"]

    with pytest.raises(ShippingLevelUnavailableError) as exc:
        cost_service.quote(32, 1, address, "EXPRESS")

    assert exc.value.available_levels == ["MAIL", "GROUND"]
    assert exc.value.details["requested_level"] == "EXPRESS"
    # no cost calculation for a tier that does not exist
    assert not any(call[0] == "calculate_print_cost" for call in provider.calls)


@pytest.mark.parametrize(
    "page_count, quantity, country",
    [(0, 1, "GB"), (32, 0, "GB"), (32, 101, "GB"), (32, 1, None)],
)
def test_invalid_requests_are_rejected_before_calling_the_provider(
    cost_service, provider, address, page_count, quantity, country
):
    address["country_code"] = country

    with pytest.raises(InvalidOrderRequestError):
        cost_service.quote(page_count, quantity, address, "MAIL")

    assert provider.calls == []


def test_shipping_options_estimate_every_tier(cost_service, address):
    options = cost_service.shipping_options(32, 1, address)

    assert [o["level"] for o in options] == ["MAIL", "PRIORITY_MAIL", "EXPEDITED"]
    mail = options[0]
    assert mail["name"] == "Standard Mail"
    assert mail["estimated_cost"] == "24.20"
    assert mail["estimated_credits"] == 2420
    assert mail["traceable"] is False
    assert options[1]["traceable"] is True


def test_helpers():
    assert apply_markup(Decimal("10"), Decimal("100")) == Decimal("20")
    assert credits_for(Decimal("0.001"), Decimal("0.01")) == 1
    assert credits_for(Decimal("24.20"), Decimal("0.01")) == 2420
