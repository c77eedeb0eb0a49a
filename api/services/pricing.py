"""
Purchase pricing — what a customer pays for a plan.

Components:
  1. Plan price: the plan's discounted price
  2. Promo discount: applied to the plan price only, never below zero
  3. Delivery fee: from the matched zone, waived on free-delivery plans
"""

from dataclasses import dataclass


@dataclass
class PurchaseQuote:
    plan_price: float
    promo_discount: float
    delivery_fee: float
    original_amount: float
    final_amount: float


def calculate_purchase_quote(
    plan_price: float,
    promo_discount: float = 0.0,
    delivery_fee: float = 0.0,
    free_delivery: bool = False,
) -> PurchaseQuote:
    """
    Build the price breakdown for a plan purchase.

    original_amount = plan_price + delivery_fee
    final_amount    = original_amount - promo_discount
    """
    plan_price = round(float(plan_price), 2)
    fee = 0.0 if free_delivery else round(float(delivery_fee or 0.0), 2)
    discount = round(min(max(float(promo_discount or 0.0), 0.0), plan_price), 2)

    original = round(plan_price + fee, 2)
    return PurchaseQuote(
        plan_price=plan_price,
        promo_discount=discount,
        delivery_fee=fee,
        original_amount=original,
        final_amount=round(original - discount, 2),
    )
