import logging
from collections.abc import Iterable, Mapping

from enums.product_type import ProductType
from exceptions.cart import InvalidQuantityError, UnknownProductError
from models.cart import AddOnInput, CartDTO, CartItemInput, LineEntryDTO, RosterMemberInput
from models.product import CatalogDTO
from utils.catalog_loader import get_default_catalog

logger = logging.getLogger(__name__)


class CartNormalizer:
    """
    Turns raw client cart input into a canonical CartDTO.

    Unit prices always come from the catalog, never from the client payload.
    Deterministic and side-effect free.
    """

    def __init__(self, catalog: CatalogDTO | None = None):
        self.catalog = catalog or get_default_catalog()

    def normalize(
        self,
        raw_items: Iterable[CartItemInput | Mapping] | None,
        raw_add_ons: Iterable[AddOnInput | Mapping] | None = None,
        team_roster: Iterable[RosterMemberInput | Mapping] | None = None,
        is_subscriber: bool = False,
    ) -> CartDTO:
        """
        Build a canonical cart.

        Individual orders merge duplicate (product, size, gender) lines by summing
        quantity. Team orders produce one quantity-1 line per member per package
        item, carrying the member's name, number and size. Explicit items given
        alongside a roster are added as merged individual lines. Add-ons are
        appended last as ADDON lines; a total add-on quantity of 0 drops the line.

        Raises:
            UnknownProductError: SKU or package not in the catalog, or SKU not allowed as add-on
            InvalidQuantityError: Negative, zero (items), fractional or non-numeric quantity
        """
        roster = [RosterMemberInput.model_validate(member) for member in (team_roster or [])]
        items = [CartItemInput.model_validate(item) for item in (raw_items or [])]
        add_ons = [AddOnInput.model_validate(add_on) for add_on in (raw_add_ons or [])]

        lines: list[LineEntryDTO] = []
        for member in roster:
            lines.extend(self._member_lines(member))
        lines.extend(self._item_lines(items))
        lines.extend(self._add_on_lines(add_ons))

        cart = CartDTO(lines=tuple(lines), is_team_order=len(roster) > 0, is_subscriber=is_subscriber)
        logger.debug(
            f"Normalized cart: {len(cart.lines)} lines, {cart.total_quantity} items, "
            f"team={cart.is_team_order}, subscriber={cart.is_subscriber}"
        )
        return cart

    def refresh_prices(self, cart: CartDTO) -> CartDTO:
        """Re-read every unit price from the current catalog (used when a stale draft is submitted)."""
        lines = []
        for line in cart.lines:
            product = self.catalog.get_product(line.product_id)
            if product.price_minor != line.unit_price_minor:
                logger.info(
                    f"Catalog price changed for {line.product_id}: "
                    f"{line.unit_price_minor} -> {product.price_minor}"
                )
            lines.append(line.model_copy(update={"unit_price_minor": product.price_minor}))
        return cart.model_copy(update={"lines": tuple(lines)})

    def _item_lines(self, items: list[CartItemInput]) -> list[LineEntryDTO]:
        merged: dict[tuple, LineEntryDTO] = {}
        for item in items:
            quantity = validate_quantity(item.product_id, item.quantity)
            product = self.catalog.get_product(item.product_id)
            key = (item.product_id, item.size, item.gender)
            existing = merged.get(key)
            if existing is not None:
                merged[key] = existing.model_copy(update={"quantity": existing.quantity + quantity})
                continue
            merged[key] = LineEntryDTO(
                product_id=product.sku,
                product_type=product.product_type,
                unit_price_minor=product.price_minor,
                quantity=quantity,
                name=product.name,
                size=item.size,
                gender=item.gender,
            )
        return list(merged.values())

    def _member_lines(self, member: RosterMemberInput) -> list[LineEntryDTO]:
        if member.package:
            products = self.catalog.get_package(member.package)
        elif member.product_ids:
            products = [self.catalog.get_product(sku) for sku in member.product_ids]
        else:
            raise UnknownProductError("", f"roster member '{member.name}' has no package or products")

        return [
            LineEntryDTO(
                product_id=product.sku,
                product_type=product.product_type,
                unit_price_minor=product.price_minor,
                quantity=1,
                name=product.name,
                size=member.size,
                gender=member.gender,
                member_name=member.name,
                member_number=member.number,
            )
            for product in products
        ]

    def _add_on_lines(self, add_ons: list[AddOnInput]) -> list[LineEntryDTO]:
        quantities: dict[str, int] = {}
        for add_on in add_ons:
            quantity = validate_quantity(add_on.product_id, add_on.quantity, allow_zero=True)
            self.catalog.get_add_on(add_on.product_id)
            quantities[add_on.product_id] = quantities.get(add_on.product_id, 0) + quantity

        lines = []
        for sku, quantity in quantities.items():
            if quantity == 0:
                continue
            product = self.catalog.get_product(sku)
            lines.append(LineEntryDTO(
                product_id=sku,
                product_type=ProductType.ADDON,
                unit_price_minor=product.price_minor,
                quantity=quantity,
                name=product.name,
            ))
        return lines


def validate_quantity(product_id: str, quantity, allow_zero: bool = False) -> int:
    """
    Coerce a client quantity to int.

    Integral floats (2.0) are accepted since JSON clients may send them.
    Booleans, strings, fractions and negatives are rejected; zero only when allow_zero.
    """
    if isinstance(quantity, bool) or not isinstance(quantity, (int, float)):
        raise InvalidQuantityError(product_id, quantity)
    if isinstance(quantity, float):
        if not quantity.is_integer():
            raise InvalidQuantityError(product_id, quantity)
        quantity = int(quantity)
    if quantity < 0 or (quantity == 0 and not allow_zero):
        raise InvalidQuantityError(product_id, quantity)
    return quantity
