# marketplace/catalog_service/main.py
from fastapi import FastAPI, HTTPException

app = FastAPI(title="Catalog + Location Service (dev mock)")


ITEMS = {
    1: {
        "id": 1,
        "seller_id": 2,
        "name": "Ceramic Mug",
        "is_active": True,
        "base_price": 250.00,
        "requires_personalization": False,
        "personalization_price": 0,
        "variants": {},
        "addons": {"1": 30.00},
    },
    2: {
        "id": 2,
        "seller_id": 2,
        "name": "Engraved Photo Frame",
        "is_active": True,
        "base_price": 450.00,
        "requires_personalization": True,
        "personalization_price": 99.00,
        "variants": {"1": 450.00, "2": 650.00},
        "addons": {},
    },
    3: {
        "id": 3,
        "seller_id": 2,
        "name": "Scented Candle",
        "is_active": False,
        "base_price": 199.00,
        "requires_personalization": False,
        "personalization_price": 0,
        "variants": {},
        "addons": {},
    },
}

ADDRESSES = {
    1: {"id": 1, "user_id": 1, "latitude": 12.9716, "longitude": 77.5946},
    2: {"id": 2, "user_id": 1, "latitude": 13.0350, "longitude": 77.5970},
}


@app.get("/items/{item_id}")
def get_item(item_id: int):
    item = ITEMS.get(item_id)
    if not item:
        raise HTTPException(status_code=404, detail="Item not found")
    return item


@app.get("/addresses/{address_id}")
def get_address(address_id: int):
    address = ADDRESSES.get(address_id)
    if not address:
        raise HTTPException(status_code=404, detail="Address not found")
    return address
