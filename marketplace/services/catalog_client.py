# marketplace/services/catalog_client.py
from decimal import Decimal

import requests

from marketplace.services.pricing import PricedLine, money
from marketplace.utils.errors import ItemUnavailableError
from marketplace.utils.logging import get_logger
from marketplace.utils.retry import http_retry
from marketplace.utils.settings import CATALOG_SERVICE_URL

logger = get_logger(__name__)


class CatalogClient:
    """
    Current price and availability from the catalog service.
    Item payload: id, seller_id, is_active, base_price, requires_personalization,
    personalization_price, variants {id: price}, addons {id: price}.
    """

    def __init__(self, base_url: str | None = None, timeout: int = 2):
        self.base_url = (base_url or CATALOG_SERVICE_URL).rstrip("/")
        self.timeout = timeout

    @http_retry()
    def fetch_item(self, item_id: int) -> dict | None:
        url = f"{self.base_url}/items/{item_id}"
        logger.info(f"CatalogClient GET {url}")

        resp = requests.get(url, timeout=self.timeout)
        if resp.status_code == 404:
            return None
        resp.raise_for_status()
        return resp.json()


def price_line(item: dict | None, line: dict) -> PricedLine:
    """Prices one cart line against the catalog's current state."""
    if not item or not item.get("is_active", True):
        raise ItemUnavailableError(item_id=line["item_id"])

    variant_id = line.get("variant_id")
    variants = {int(k): v for k, v in (item.get("variants") or {}).items()}
    if variants and variant_id is None:
        raise ItemUnavailableError("Please select an option.", item_id=line["item_id"])
    if variant_id is not None and variant_id not in variants:
        raise ItemUnavailableError(item_id=line["item_id"], variant_id=variant_id)

    unit_price = money(variants[variant_id] if variant_id is not None else item["base_price"])

    addons = {int(k): v for k, v in (item.get("addons") or {}).items()}
    addons_price = Decimal("0")
    for addon in line.get("selected_addons") or []:
        if int(addon["id"]) not in addons:
            raise ItemUnavailableError("A selected add-on is no longer available.", item_id=line["item_id"])
        addons_price += Decimal(str(addons[int(addon["id"])]))

    personalization = line.get("personalization") or {}
    personalization_price = Decimal("0")
    if personalization.get("enabled"):
        personalization_price = Decimal(str(item.get("personalization_price") or 0))

    return PricedLine(
        item_id=line["item_id"],
        variant_id=variant_id,
        quantity=int(line["quantity"]),
        unit_price=unit_price,
        addons_price=money(addons_price),
        personalization_price=money(personalization_price),
    )


def line_requires_personalization(item: dict | None, line: dict) -> bool:
    personalization = line.get("personalization") or {}
    return bool(personalization.get("enabled")) or bool(item and item.get("requires_personalization"))
