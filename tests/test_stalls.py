import pytest

from errors import ValidationError
from models import AdminLog, FoodStall, MenuItem
from services.stall_service import StallService, normalize_category


@pytest.mark.parametrize("value", ["Street Food", "street_food", "street-food", "STREETFOOD"])
def test_normalize_category_spellings(value):
    assert normalize_category(value) == "streetfood"


def test_normalize_category_singular_aliases():
    assert normalize_category("Beverage") == normalize_category("Beverages")
    assert normalize_category("Rice Meal") == normalize_category("rice_meals")


def test_list_stalls_paginated(client, owner, make_stall):
    for name in ("Alpha Bites", "Bravo Brews", "Charlie Chicken"):
        make_stall(owner, name=name)

    response = client.get("/api/stalls/", params={"perPage": 2, "page": 2})
    body = response.json()
    assert body["pagination"] == {"total": 3, "page": 2, "perPage": 2, "totalPages": 2}
    assert [s["name"] for s in body["data"]] == ["Charlie Chicken"]


def test_search_and_category_filter(client, owner, make_stall):
    make_stall(owner, name="Tea Time", categories=["beverage"])
    make_stall(owner, name="Isaw Express", categories=["Street Food"])

    by_category = client.get("/api/stalls/", params={"category": "Beverages"}).json()["data"]
    assert [s["name"] for s in by_category] == ["Tea Time"]

    by_search = client.get("/api/stalls/", params={"search": "isaw"}).json()["data"]
    assert [s["name"] for s in by_search] == ["Isaw Express"]


def test_inactive_stalls_are_hidden(client, db, owner, make_stall):
    stall = make_stall(owner)
    stall.is_active = False
    db.commit()

    assert client.get("/api/stalls/").json()["data"] == []
    response = client.get(f"/api/stalls/{stall.stall_id}")
    assert response.status_code == 404
    assert response.json()["message"] == "Stall not found"


def test_categories_deduplicate_spellings(client, owner, make_stall):
    make_stall(owner, name="One", categories=["Snacks"])
    make_stall(owner, name="Two", categories=["snack", "Beverages"])

    categories = client.get("/api/stalls/categories").json()["data"]
    assert len(categories) == 2


def test_unknown_route_uses_error_envelope(client):
    response = client.get("/api/does-not-exist")
    assert response.status_code == 404
    assert response.json() == {"success": False, "message": "Resource not found", "errors": []}


def test_admin_creates_stall(client, db, admin, owner, login):
    login(client, admin)
    payload = {"owner_id": owner.user_id, "name": "Lechon Corner", "food_categories": ["Rice Meals"],
               "address": "Row D", "latitude": 12.5, "longitude": 40.0}

    response = client.post("/api/stalls/", json=payload)
    assert response.status_code == 201
    data = response.json()["data"]
    assert data["address"] == "Row D"
    assert db.query(AdminLog).filter(AdminLog.entity == "stall", AdminLog.action == "create").count() == 1


def test_stall_owner_must_be_an_owner_account(client, db, admin, enthusiast, login):
    login(client, admin)
    for owner_id in (enthusiast.user_id, admin.user_id):
        response = client.post("/api/stalls/", json={"owner_id": owner_id, "name": "Misassigned"})
        assert response.status_code == 400
        assert "food stall owner" in response.json()["message"]
    assert db.query(FoodStall).count() == 0


def test_create_stall_requires_admin(client, owner, login):
    login(client, owner)
    response = client.post("/api/stalls/", json={"owner_id": owner.user_id, "name": "Sneaky"})
    assert response.status_code == 403


def test_owner_can_only_edit_hours(client, owner, make_stall, login):
    stall = make_stall(owner)
    login(client, owner)

    response = client.put(f"/api/stalls/{stall.stall_id}", json={"hours": "5PM - 12AM"})
    assert response.status_code == 200
    assert response.json()["data"]["hours"] == "5PM - 12AM"

    renamed = client.put(f"/api/stalls/{stall.stall_id}", json={"name": "Brand New Name"})
    assert renamed.status_code == 400
    assert "amendment request" in renamed.json()["message"]


def test_menu_management(client, db, owner, enthusiast, make_stall, login):
    stall = make_stall(owner)
    login(client, owner)

    created = client.post(f"/api/stalls/{stall.stall_id}/menu",
                          json={"name": "Pork Sisig", "price": 120.5, "description": "Sizzling"})
    assert created.status_code == 201
    item_id = created.json()["data"]["item_id"]

    updated = client.put(f"/api/stalls/{stall.stall_id}/menu/{item_id}", json={"price": 99})
    assert updated.json()["data"]["price"] == 99.0

    negative = client.post(f"/api/stalls/{stall.stall_id}/menu", json={"name": "Free", "price": -1})
    assert negative.status_code == 400

    menu = client.get(f"/api/stalls/{stall.stall_id}/menu").json()["data"]
    assert [i["name"] for i in menu] == ["Pork Sisig"]

    client.post("/api/auth/logout")
    login(client, enthusiast)
    forbidden = client.delete(f"/api/stalls/{stall.stall_id}/menu/{item_id}")
    assert forbidden.status_code == 403
    assert db.query(MenuItem).count() == 1


def test_admin_deletes_stall_with_content(client, db, admin, owner, enthusiast, make_stall, login):
    stall = make_stall(owner)
    stall_id = stall.stall_id
    login(client, enthusiast)
    client.post("/api/reviews/", json={"stall_id": stall_id, "rating": 4, "comment": "Good"})
    client.post("/api/auth/logout")

    login(client, admin)
    response = client.delete(f"/api/stalls/{stall_id}")
    assert response.status_code == 200
    db.expire_all()
    assert db.query(FoodStall).filter(FoodStall.stall_id == stall_id).first() is None


@pytest.mark.parametrize("price", ["inf", "-inf", "nan", "Infinity", "abc"])
def test_menu_price_must_be_a_finite_number(db, owner, make_stall, price):
    stall = make_stall(owner)
    with pytest.raises(ValidationError) as exc:
        StallService(db).add_menu_item(owner, stall.stall_id, "Mystery Skewer", price)
    assert exc.value.errors == ["Price must be a number"]
    assert db.query(MenuItem).count() == 0


def test_menu_price_is_rounded(db, owner, make_stall):
    stall = make_stall(owner)
    item = StallService(db).add_menu_item(owner, stall.stall_id, "Fishball", "15.456")
    assert float(item.price) == 15.46
