# marketplace/api/deps.py
from marketplace.services.catalog_client import CatalogClient
from marketplace.services.location_client import LocationClient
from marketplace.services.lock_service import LockService
from marketplace.services.notification_service import ChangeNotifier
from marketplace.services.payment_gateway import PaymentGateway, build_gateway
from marketplace.services.realtime import RealtimeSubscriber


def get_catalog() -> CatalogClient:
    return CatalogClient()


def get_location() -> LocationClient:
    return LocationClient()


def get_gateway() -> PaymentGateway:
    return build_gateway()


def get_notifier() -> ChangeNotifier:
    return ChangeNotifier()


def get_lock() -> LockService:
    return LockService()


def get_subscriber_factory():
    return RealtimeSubscriber
