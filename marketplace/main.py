# marketplace/main.py
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from marketplace.api.errors import marketplace_error_handler
from marketplace.api.routers import carts, checkout, cron, health, orders, realtime, seller, webhooks
from marketplace.data.database import Base, engine
from marketplace.data import models  # noqa: F401  registers every table on Base.metadata
from marketplace.data.seed import seed
from marketplace.utils.errors import MarketplaceError
from marketplace.utils.logging import get_logger
from marketplace.utils.settings import SEED_DEMO_DATA

logger = get_logger(__name__)


def init_db() -> None:
    logger.info(f"Creating tables: {list(Base.metadata.tables.keys())}")
    Base.metadata.create_all(bind=engine)
    if SEED_DEMO_DATA:
        seed()


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


def create_app() -> FastAPI:
    app = FastAPI(
        title="Marketplace Order Service",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_exception_handler(MarketplaceError, marketplace_error_handler)

    app.include_router(health.router)
    app.include_router(carts.router)
    app.include_router(checkout.router)
    app.include_router(webhooks.router)
    app.include_router(orders.router)
    app.include_router(seller.router)
    app.include_router(realtime.router)
    app.include_router(cron.router)

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
