from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Iterable, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from app.core.errors import ValidationError
from app.schemas.pricing import LineItem, MAX_AMOUNT, PriceBreakdown

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")

Number = Union[Decimal, int, float, str, None]


def quantize(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_money(value: Number, field: str) -> Decimal:
    """Convert an incoming amount to Decimal. None means zero."""
    if value is None:
        return ZERO
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number", details={"field": field})
    try:
        # str() first so binary floats do not leak their representation error
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number", details={"field": field})
    if not amount.is_finite():
        raise ValidationError(f"{field} must be finite", details={"field": field})
    if abs(amount) > MAX_AMOUNT:
        raise ValidationError(f"{field} must not exceed {MAX_AMOUNT}", details={"field": field})
    return amount


def normalize_items(items: Optional[Iterable[Any]]) -> List[LineItem]:
    if items is None:
        return []
    if isinstance(items, (str, bytes, dict)):
        raise ValidationError("menu items must be a list", details={"field": "menu_items"})

    resolved = []
    for index, raw in enumerate(items):
        if isinstance(raw, LineItem):
            resolved.append(raw)
            continue
        try:
            resolved.append(LineItem.model_validate(raw))
        except PydanticValidationError as e:
            errors = [
                {"loc": ".".join(str(p) for p in err["loc"]), "msg": err["msg"]}
                for err in e.errors()
            ]
            raise ValidationError(
                f"Invalid menu item at position {index}",
                details={"field": "menu_items", "index": index, "errors": errors},
            )
    return resolved


def calculate(
    items: Optional[Iterable[Any]],
    discount_fixed: Number = None,
    discount_percent: Number = None,
    delivery_cost: Number = None,
) -> PriceBreakdown:
    resolved_items = normalize_items(items)
    fixed = quantize(to_money(discount_fixed, "discount_fixed"))
    percent = quantize(to_money(discount_percent, "discount_percent"))
    delivery = quantize(to_money(delivery_cost, "delivery_cost"))

    if fixed < 0:
        raise ValidationError("discount_fixed must not be negative", details={"field": "discount_fixed"})
    if percent < 0 or percent > HUNDRED:
        raise ValidationError("discount_percent must be between 0 and 100", details={"field": "discount_percent"})
    if delivery < 0:
        raise ValidationError("delivery_cost must not be negative", details={"field": "delivery_cost"})

    try:
        items_total = quantize(sum(
            (quantize(item.unit_price * item.quantity) for item in resolved_items),
            ZERO,
        ))
    except InvalidOperation:
        raise ValidationError("menu items total is out of range", details={"field": "menu_items"})
    if items_total > MAX_AMOUNT:
        raise ValidationError(f"menu items total must not exceed {MAX_AMOUNT}", details={"field": "menu_items"})

    discount = fixed + items_total * percent / HUNDRED
    discount_amount = quantize(min(items_total, max(ZERO, discount)))

    subtotal = max(ZERO, items_total - discount_amount)
    final_amount = quantize(subtotal + delivery)
    if final_amount > MAX_AMOUNT:
        raise ValidationError(f"final amount must not exceed {MAX_AMOUNT}", details={"field": "delivery_cost"})

    return PriceBreakdown(
        items_total=items_total,
        discount_fixed=fixed,
        discount_percent=percent,
        discount_amount=discount_amount,
        delivery_cost=delivery,
        final_amount=final_amount,
        resolved_items=resolved_items,
    )
