import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_CEILING
from typing import Any, Dict, List, Optional

from storyprint.config import settings
from storyprint.exceptions import InvalidOrderRequestError, ShippingLevelUnavailableError
from storyprint.services.provider_client import PrintProviderClient

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
HUNDRED = Decimal("100")

SHIPPING_LEVEL_INFO = {
    "MAIL": {
        "name": "Standard Mail",
        "description": "Slowest shipping method. Tracking may not be available.",
        "estimated_days": "7-14 business days",
    },
    "PRIORITY_MAIL": {
        "name": "Priority Mail",
        "description": "Priority mail shipping with tracking.",
        "estimated_days": "3-7 business days",
    },
    "GROUND": {
        "name": "Ground Shipping",
        "description": "Courier-based ground transportation.",
        "estimated_days": "3-5 business days",
    },
    "EXPEDITED": {
        "name": "Expedited Shipping",
        "description": "2nd day delivery via air mail.",
        "estimated_days": "2-3 business days",
    },
    "EXPRESS": {
        "name": "Express Shipping",
        "description": "Overnight delivery. Fastest option available.",
        "estimated_days": "1-2 business days",
    },
}


def apply_markup(amount: Decimal, percentage: Decimal) -> Decimal:
    return amount * (1 + Decimal(percentage) / HUNDRED)


def credits_for(total: Decimal, credit_value: Decimal) -> int:
    # Round up: a fractional credit is always charged, never dropped
    return int((total / Decimal(credit_value)).to_integral_value(rounding=ROUND_CEILING))


@dataclass(frozen=True)
class CostQuote:
    page_count: int
    quantity: int
    shipping_level: str
    currency: str

    # internal only
    provider_print_cost: Decimal
    provider_shipping_cost: Decimal
    print_markup_percentage: Decimal
    shipping_markup_percentage: Decimal

    total_cost: Decimal
    total_cost_credits: int

    @property
    def provider_cost(self) -> Decimal:
        return self.provider_print_cost + self.provider_shipping_cost

    def public(self) -> Dict[str, Any]:
        """What may leave the service: no provider cost, no markups."""
        return {
            "page_count": self.page_count,
            "quantity": self.quantity,
            "shipping_level": self.shipping_level,
            "currency": self.currency,
            "total_cost": str(self.total_cost.quantize(CENT, rounding=ROUND_CEILING)),
            "total_cost_credits": self.total_cost_credits,
        }


class CostService:
    def __init__(
        self,
        provider: PrintProviderClient,
        print_markup_percentage: Optional[Decimal] = None,
        shipping_markup_percentage: Optional[Decimal] = None,
        credit_value: Optional[Decimal] = None,
        max_quantity: Optional[int] = None,
    ):
        self.provider = provider
        self.print_markup_percentage = Decimal(
            print_markup_percentage
            if print_markup_percentage is not None
            else settings.print_markup_percentage
        )
        self.shipping_markup_percentage = Decimal(
            shipping_markup_percentage
            if shipping_markup_percentage is not None
            else settings.shipping_markup_percentage
        )
        self.credit_value = Decimal(credit_value or settings.credit_value)
        self.max_quantity = max_quantity or settings.max_print_quantity

    def validate_request(self, page_count: int, quantity: int, shipping_address: Dict[str, Any]):
        if not isinstance(page_count, int) or page_count < 1:
            raise InvalidOrderRequestError(f"Invalid page count: {page_count}", {"page_count": page_count})
        if not isinstance(quantity, int) or quantity < 1 or quantity > self.max_quantity:
            raise InvalidOrderRequestError(
                f"Invalid quantity: {quantity}. Must be between 1 and {self.max_quantity}",
                {"quantity": quantity},
            )
        if not shipping_address or not shipping_address.get("country_code"):
            raise InvalidOrderRequestError("Shipping address with a country code is required")

    def quote(
        self,
        page_count: int,
        quantity: int,
        shipping_address: Dict[str, Any],
        shipping_level: str,
    ) -> CostQuote:
        self.validate_request(page_count, quantity, shipping_address)
        country = shipping_address.get("country_code")

        logger.info(
            f"Calculating print cost: {quantity} x {page_count} pages, "
            f"{shipping_level} to {country}"
        )

        options = self.provider.get_shipping_options(shipping_address, page_count, quantity)
        available_levels = [option.level for option in options]
        if shipping_level not in available_levels:
            logger.error(
                f"Requested shipping level {shipping_level} not available for {country}. "
                f"Available: {available_levels}"
            )
            raise ShippingLevelUnavailableError(shipping_level, country, available_levels)

        calculation = self.provider.calculate_print_cost(
            page_count, quantity, shipping_address, shipping_level
        )

        print_cost = calculation.print_cost
        shipping_cost = calculation.shipping_cost
        total = apply_markup(print_cost, self.print_markup_percentage) + apply_markup(
            shipping_cost, self.shipping_markup_percentage
        )

        quote = CostQuote(
            page_count=page_count,
            quantity=quantity,
            shipping_level=shipping_level,
            currency=calculation.currency,
            provider_print_cost=print_cost,
            provider_shipping_cost=shipping_cost,
            print_markup_percentage=self.print_markup_percentage,
            shipping_markup_percentage=self.shipping_markup_percentage,
            total_cost=total,
            total_cost_credits=credits_for(total, self.credit_value),
        )

        logger.info(
            f"Quote ready: {quote.total_cost_credits} credits "
            f"({quote.total_cost} {quote.currency}, provider {quote.provider_cost})"
        )
        return quote

    def shipping_options(
        self, page_count: int, quantity: int, shipping_address: Dict[str, Any]
    ) -> List[Dict[str, Any]]:
        """
        Tiers offered for a destination, with a customer-facing price estimate.

        The print part of the estimate comes from one sample quote on the
        first tier; shipping is marked up per tier.
        """
        self.validate_request(page_count, quantity, shipping_address)

        options = self.provider.get_shipping_options(shipping_address, page_count, quantity)
        if not options:
            return []

        sample = self.provider.calculate_print_cost(
            page_count, quantity, shipping_address, options[0].level
        )
        print_with_markup = apply_markup(sample.print_cost, self.print_markup_percentage)

        results = []
        for option in options:
            info = SHIPPING_LEVEL_INFO.get(option.level, {})
            estimate = print_with_markup + apply_markup(
                option.cost_incl_tax, self.shipping_markup_percentage
            )
            results.append(
                {
                    "level": option.level,
                    "name": info.get("name", option.level),
                    "description": info.get("description", "Shipping option"),
                    "estimated_days": info.get("estimated_days")
                    or f"{option.total_days_min or 'Unknown'}-{option.total_days_max or 'Unknown'} business days",
                    "traceable": option.traceable,
                    "min_delivery_date": option.min_delivery_date,
                    "max_delivery_date": option.max_delivery_date,
                    "currency": sample.currency,
                    "estimated_cost": str(estimate.quantize(CENT, rounding=ROUND_CEILING)),
                    "estimated_credits": credits_for(estimate, self.credit_value),
                }
            )
        return results
