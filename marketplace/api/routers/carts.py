# marketplace/api/routers/carts.py
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from marketplace.api.deps import get_catalog
from marketplace.api.errors import unwrap
from marketplace.data.database import get_db
from marketplace.domain.schemas import CartItemIn, CartOut, QuantityIn
from marketplace.services.cart_service import CartService
from marketplace.services.catalog_client import CatalogClient

router = APIRouter(prefix="/cart", tags=["cart"])


def get_service(db: Session, catalog: CatalogClient):
    return CartService(db=db, catalog=catalog)


@router.get("/", response_model=CartOut)
def get_cart(
    user_id: int = Query(...),
    db: Session = Depends(get_db),
    catalog: CatalogClient = Depends(get_catalog),
):
    return get_service(db, catalog).get_cart(user_id)


@router.post("/items", response_model=CartOut)
def add_item(
    payload: CartItemIn,
    user_id: int = Query(...),
    db: Session = Depends(get_db),
    catalog: CatalogClient = Depends(get_catalog),
):
    svc = get_service(db, catalog)
    return unwrap(
        svc.add_item(
            user_id=user_id,
            item_id=payload.item_id,
            quantity=payload.quantity,
            variant_id=payload.variant_id,
            personalization=payload.personalization.model_dump() if payload.personalization else None,
            selected_addons=[a.model_dump() for a in payload.selected_addons],
        )
    )


@router.patch("/items/{cart_item_id}", response_model=CartOut)
def update_quantity(
    cart_item_id: int,
    payload: QuantityIn,
    user_id: int = Query(...),
    db: Session = Depends(get_db),
    catalog: CatalogClient = Depends(get_catalog),
):
    svc = get_service(db, catalog)
    return unwrap(svc.update_quantity(user_id=user_id, cart_item_id=cart_item_id, quantity=payload.quantity))


@router.delete("/items/{cart_item_id}", response_model=CartOut)
def remove_item(
    cart_item_id: int,
    user_id: int = Query(...),
    db: Session = Depends(get_db),
    catalog: CatalogClient = Depends(get_catalog),
):
    svc = get_service(db, catalog)
    return unwrap(svc.remove_item(user_id=user_id, cart_item_id=cart_item_id))


@router.delete("/", response_model=CartOut)
def clear_cart(
    user_id: int = Query(...),
    db: Session = Depends(get_db),
    catalog: CatalogClient = Depends(get_catalog),
):
    svc = get_service(db, catalog)
    return unwrap(svc.clear_cart(user_id=user_id))
