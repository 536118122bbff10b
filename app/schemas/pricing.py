from decimal import Decimal
from typing import List, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

# Capacity of the Numeric(12, 2) money columns
MAX_AMOUNT = Decimal("9999999999.99")
MAX_QUANTITY = 100000


class LineItem(BaseModel):
    """One priced menu position. `price` is accepted for legacy cart payloads."""
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: Union[int, str]
    name: str = Field(min_length=1, max_length=255)
    unit_price: Decimal = Field(
        validation_alias=AliasChoices("unit_price", "price"),
        ge=0,
        le=MAX_AMOUNT,
        allow_inf_nan=False,
    )
    quantity: int = Field(gt=0, le=MAX_QUANTITY)

    def to_json(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "unit_price": str(self.unit_price),
            "quantity": self.quantity,
        }


class PriceBreakdown(BaseModel):
    model_config = ConfigDict(frozen=True)

    items_total: Decimal
    discount_fixed: Decimal
    discount_percent: Decimal
    discount_amount: Decimal
    delivery_cost: Decimal
    final_amount: Decimal
    resolved_items: List[LineItem]
