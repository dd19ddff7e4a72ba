# marketplace/services/location_client.py
import math

import requests

from marketplace.utils.errors import AddressNotFoundError
from marketplace.utils.logging import get_logger
from marketplace.utils.retry import http_retry
from marketplace.utils.settings import LOCATION_SERVICE_URL

logger = get_logger(__name__)

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


class LocationClient:
    """Resolves a buyer address id to coordinates."""

    def __init__(self, base_url: str | None = None, timeout: int = 2):
        self.base_url = (base_url or LOCATION_SERVICE_URL).rstrip("/")
        self.timeout = timeout

    @http_retry()
    def fetch_address(self, address_id: int) -> dict:
        url = f"{self.base_url}/addresses/{address_id}"
        logger.info(f"LocationClient GET {url}")

        resp = requests.get(url, timeout=self.timeout)
        if resp.status_code == 404:
            raise AddressNotFoundError(address_id=address_id)
        resp.raise_for_status()
        return resp.json()


def address_distance_km(address: dict, seller_lat: float | None, seller_lng: float | None) -> float | None:
    lat, lng = address.get("latitude"), address.get("longitude")
    if None in (lat, lng, seller_lat, seller_lng):
        # unknown distance falls back to the nearest fee band
        return None
    return round(haversine_km(lat, lng, seller_lat, seller_lng), 3)
