from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from enums.product_type import ProductType


class CartItemInput(BaseModel):
    """Raw individual-order line as sent by the client. Quantity is validated by CartNormalizer."""
    product_id: str
    quantity: Any = 1
    size: str | None = None
    gender: str | None = None


class AddOnInput(BaseModel):
    product_id: str
    quantity: Any = 0


class RosterMemberInput(BaseModel):
    """
    One player of a team order.

    A member either picks a package key (e.g. "fullKit") or an explicit list of SKUs.
    """
    name: str
    number: str | None = None
    size: str | None = None
    gender: str | None = None
    package: str | None = None
    product_ids: list[str] = []


class CartInput(BaseModel):
    items: list[CartItemInput] = []
    add_ons: list[AddOnInput] = []
    team_roster: list[RosterMemberInput] | None = None


class LineEntryDTO(BaseModel):
    """Normalized priced line. Only product_id, unit_price_minor and quantity affect the total."""
    model_config = ConfigDict(frozen=True)

    product_id: str
    product_type: ProductType
    unit_price_minor: int = Field(..., ge=0)
    quantity: int = Field(..., ge=1)

    # Display-only attributes
    name: str | None = None
    size: str | None = None
    gender: str | None = None
    member_name: str | None = None
    member_number: str | None = None

    @property
    def line_total_minor(self) -> int:
        return self.unit_price_minor * self.quantity


class CartDTO(BaseModel):
    model_config = ConfigDict(frozen=True)

    lines: tuple[LineEntryDTO, ...] = ()
    is_team_order: bool = False
    is_subscriber: bool = False

    @property
    def total_quantity(self) -> int:
        return sum(line.quantity for line in self.lines)

    @property
    def is_empty(self) -> bool:
        return len(self.lines) == 0
