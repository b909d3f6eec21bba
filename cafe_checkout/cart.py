"""
cart.py — Cart Operations

Read-modify-write operations on a customer's cart. Each operation reads the
cart, applies its change, recomputes the derived total from the catalog and
saves with the version it read. A concurrent writer in between makes the save
fail with `StaleCart` instead of silently losing one of the two edits.

Clients may also pass the version they last saw (`expected_version`); a
mismatch is rejected the same way.
"""

import logging
from decimal import Decimal
from typing import Optional

from .errors import CartLineNotFound, ItemNotFound, ItemUnavailable, StaleCart, UnknownSize
from .models import Cart, CartLine, LineItemSelection
from .pricing import DEFAULT_RULES, PriceRules, check_quantity, compute_subtotal, find_size, resolve_unit_price, round_money

log = logging.getLogger(__name__)


class CartService:
    """
    Cart management on top of a catalog store and a cart store.

    Args:
        catalog: CatalogStore used to validate selections and price lines.
        carts: CartStore holding the carts.
        rules (PriceRules): Surcharges used for the derived total.
        strict_sizes (bool): Reject sizes the item does not offer instead of
            pricing them at the base price.
    """

    def __init__(self, catalog, carts, rules: PriceRules = DEFAULT_RULES, strict_sizes: bool = True):
        self.catalog = catalog
        self.carts = carts
        self.rules = rules
        self.strict_sizes = strict_sizes

    def get_cart(self, owner: str) -> Cart:
        return self.carts.get_cart(owner)

    def add_item(self, owner: str, selection: LineItemSelection, expected_version: Optional[int] = None) -> Cart:
        """
        Adds a configured line. A line with the same item, size, milk and cold foam
        absorbs the quantity instead of creating a duplicate row.

        Raises:
            ItemNotFound, ItemUnavailable, InvalidQuantity, UnknownSize, StaleCart
        """
        self._validate_selection(selection)

        cart = self.carts.get_cart(owner)
        read_version = cart.version

        for line in cart.items:
            if line.same_configuration(selection):
                line.quantity += selection.quantity
                if selection.special_instructions:
                    line.special_instructions = selection.special_instructions
                break
        else:
            cart.items.append(CartLine(**selection.model_dump()))

        saved = self._save(cart, read_version, expected_version)
        log.info(f"[Cart: {owner}] Added {selection.quantity} x {selection.menu_item_id}. "
                 f"Total: {saved.total_amount}")
        return saved

    def update_item(self, owner: str, line_id: str, quantity: int, expected_version: Optional[int] = None) -> Cart:
        """
        Sets the quantity of one line.

        Raises:
            InvalidQuantity, CartLineNotFound, StaleCart
        """
        check_quantity(quantity)

        cart = self.carts.get_cart(owner)
        read_version = cart.version
        line = self._find_line(cart, line_id)
        line.quantity = quantity

        saved = self._save(cart, read_version, expected_version)
        log.info(f"[Cart: {owner}] Line {line_id} quantity set to {quantity}.")
        return saved

    def remove_item(self, owner: str, line_id: str, expected_version: Optional[int] = None) -> Cart:
        cart = self.carts.get_cart(owner)
        read_version = cart.version
        line = self._find_line(cart, line_id)
        cart.items.remove(line)

        saved = self._save(cart, read_version, expected_version)
        log.info(f"[Cart: {owner}] Line {line_id} removed.")
        return saved

    def clear_cart(self, owner: str, expected_version: Optional[int] = None) -> Cart:
        """Empties the cart and resets its total. With `expected_version` the clear only succeeds on that version."""
        cart = self.carts.get_cart(owner)
        read_version = cart.version
        cart.items = []

        saved = self._save(cart, read_version, expected_version)
        log.info(f"[Cart: {owner}] Cleared.")
        return saved

    def cart_total(self, cart: Cart) -> Decimal:
        """
        Derived total of the cart.

        Lines whose menu item was deleted from the catalog are left out here so the
        customer can still view and edit the cart; checkout rejects them.
        """
        known = []
        for line in cart.items:
            if self.catalog.get_item(line.menu_item_id) is None:
                log.warning(f"[Cart: {cart.owner}] Menu item {line.menu_item_id} no longer exists.")
                continue
            known.append(line)
        return compute_subtotal(
            known, self.catalog.get_item,
            resolver=lambda item, selection: resolve_unit_price(item, selection, self.rules),
        )

    def _validate_selection(self, selection: LineItemSelection):
        check_quantity(selection.quantity)

        item = self.catalog.get_item(selection.menu_item_id)
        if item is None:
            raise ItemNotFound(selection.menu_item_id)
        if not item.available:
            raise ItemUnavailable(item.id)
        if self.strict_sizes and selection.selected_size and find_size(item, selection.selected_size) is None:
            raise UnknownSize(item.id, selection.selected_size)

    @staticmethod
    def _find_line(cart: Cart, line_id: str) -> CartLine:
        for line in cart.items:
            if line.id == line_id:
                return line
        raise CartLineNotFound(line_id)

    def _save(self, cart: Cart, read_version: int, expected_version: Optional[int]) -> Cart:
        if expected_version is not None and expected_version != read_version:
            raise StaleCart(cart.owner, expected_version, read_version)
        cart.total_amount = round_money(self.cart_total(cart))
        return self.carts.save_cart(cart, read_version)
