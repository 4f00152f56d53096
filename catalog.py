"""
Static product catalog and cart pricing.

Prices are kept the way the storefront displays them ("Php1,299.00") and are
parsed into Decimal whenever arithmetic is needed.
"""
import logging
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Dict, Iterable, List, Optional, Tuple

from config import POINTS_RATE

logger = logging.getLogger(__name__)

UNKNOWN_NAME = "Unknown Product"
UNKNOWN_DESCRIPTION = "No Description"
UNKNOWN_PRICE = "N/A"

CENTS = Decimal("0.01")
_PRICE_CHARS = re.compile(r"[^0-9.\-]")


@dataclass(frozen=True)
class Product:
    id: int
    name: str
    description: str
    price: str
    image: Optional[str] = None

    @property
    def unit_price(self) -> Decimal:
        return parse_price(self.price)


def parse_price(price) -> Decimal:
    """'Php1,299.00' -> Decimal('1299.00'). Unparseable prices are 0."""
    if isinstance(price, (int, float, Decimal)):
        return Decimal(str(price))
    cleaned = _PRICE_CHARS.sub("", str(price or ""))
    try:
        return Decimal(cleaned) if cleaned else Decimal(0)
    except InvalidOperation:
        return Decimal(0)


def format_amount(amount: Decimal) -> str:
    return str(amount.quantize(CENTS, rounding=ROUND_HALF_UP))


def points_for(amount, rate: Decimal = POINTS_RATE) -> int:
    """Loyalty points earned for an amount: floor(amount / rate), never negative."""
    amount = parse_price(amount)
    if amount <= 0:
        return 0
    return int(amount // rate)


def to_centavos(amount: Decimal) -> int:
    return int((amount * 100).quantize(Decimal(1), rounding=ROUND_HALF_UP))


class Catalog:
    def __init__(self, products: Iterable[Product]):
        self._products: Dict[int, Product] = {p.id: p for p in products}

    def __contains__(self, product_id) -> bool:
        return product_id in self._products

    def all(self) -> List[Product]:
        return list(self._products.values())

    def get(self, product_id: int) -> Optional[Product]:
        return self._products.get(product_id)

    def line(self, product_id: int, quantity: int) -> dict:
        """One itemized cart line, with the catalog fallbacks for unknown ids."""
        product = self.get(product_id)
        if product is None:
            logger.warning("Product %s not found in catalog", product_id)
            return {
                "id": product_id,
                "name": UNKNOWN_NAME,
                "description": UNKNOWN_DESCRIPTION,
                "quantity": quantity,
                "price": UNKNOWN_PRICE,
                "image": None,
                "line_total": format_amount(Decimal(0)),
            }
        return {
            "id": product.id,
            "name": product.name or UNKNOWN_NAME,
            "description": product.description or UNKNOWN_DESCRIPTION,
            "quantity": quantity,
            "price": product.price or UNKNOWN_PRICE,
            "image": product.image,
            "line_total": format_amount(product.unit_price * quantity),
        }

    def total(self, items: Iterable[Tuple[int, int]]) -> Decimal:
        """sum(price x quantity) over (product_id, quantity) pairs, rounded to 2 decimals."""
        total = Decimal(0)
        for product_id, quantity in items:
            product = self.get(product_id)
            if product is None:
                continue
            total += product.unit_price * quantity
        return total.quantize(CENTS, rounding=ROUND_HALF_UP)


DEMO_PRODUCTS: List[Product] = [
    Product(1, "Boxing Gloves", "Pro-style 12oz leather training gloves", "Php100.00", "https://picsum.photos/seed/gloves/600/400"),
    Product(2, "Hand Wraps", "180-inch elastic cotton hand wraps", "Php350.00", "https://picsum.photos/seed/wraps/600/400"),
    Product(3, "Heavy Bag", "100lb unfilled heavy bag with chains", "Php4,999.00", "https://picsum.photos/seed/bag/600/400"),
    Product(4, "Headgear", "Padded sparring headgear with cheek protection", "Php2,450.00", "https://picsum.photos/seed/headgear/600/400"),
    Product(5, "Speed Bag Platform", "Wall-mounted adjustable speed bag platform", "Php6,250.50", "https://picsum.photos/seed/platform/600/400"),
    Product(6, "Jump Rope", "Weighted bearing jump rope", "Php499.00", "https://picsum.photos/seed/rope/600/400"),
    Product(7, "Mouthguard", "Boil-and-bite mouthguard with case", "Php199.00", "https://picsum.photos/seed/guard/600/400"),
    Product(8, "Boxing Shoes", "High-top boxing shoes, suede upper", "Php3,800.00", "https://picsum.photos/seed/shoes/600/400"),
]

catalog = Catalog(DEMO_PRODUCTS)
