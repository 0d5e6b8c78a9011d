import pytest

from email_service import email_service
from errors import NotFoundError
from models import STATUS_DECLINED, AdminLog, AmendmentRequest, FoodStall, StallLocation
from services.change_request_service import AmendmentService, ClosureService


@pytest.fixture
def stall(owner, make_stall):
    return make_stall(owner, name="Kanto Freestyle", categories=["Street Food"], address="Row A")


@pytest.fixture
def decisions(monkeypatch):
    sent = []
    monkeypatch.setattr(email_service, "send_request_decision_email", lambda *args: sent.append(args) or True)
    return sent


def submit_amendment(client, stall, field_name, new_value, reason="Rebranding"):
    return client.post("/api/amendments/", json={"stall_id": stall.stall_id, "field_name": field_name,
                                                 "new_value": new_value, "reason": reason})


def test_amendment_records_old_value(client, owner, stall, login):
    login(client, owner)
    response = submit_amendment(client, stall, "name", "Kanto Classics")

    assert response.status_code == 201
    data = response.json()["data"]
    assert (data["old_value"], data["new_value"], data["status"]) == ("Kanto Freestyle", "Kanto Classics", "pending")


def test_amendment_validation(client, owner, stall, login):
    login(client, owner)
    unchanged = submit_amendment(client, stall, "name", "Kanto Freestyle")
    assert unchanged.status_code == 400
    assert "already set" in unchanged.json()["message"]

    assert submit_amendment(client, stall, "address", "Row B").status_code == 201
    duplicate = submit_amendment(client, stall, "address", "Row C")
    assert duplicate.status_code == 400
    assert "pending amendment" in duplicate.json()["message"]

    not_amendable = submit_amendment(client, stall, "hours", "24/7")
    assert not_amendable.status_code == 400


def test_only_the_owner_can_request(client, make_user, stall, login):
    login(client, make_user("Stranger", "food_stall_owner"))
    assert submit_amendment(client, stall, "name", "Hijacked").status_code == 403
    closure = client.post("/api/closures/", json={"stall_id": stall.stall_id, "reason": "Mine now"})
    assert closure.status_code == 403


@pytest.mark.parametrize("field_name,new_value", [
    ("name", "Kanto Classics"),
    ("description", "Now serving grilled seafood"),
    ("food_categories", "Street Food, Beverages"),
    ("address", "Row Z"),
])
def test_approving_amendment_applies_change(client, db, admin, owner, stall, login, decisions,
                                            field_name, new_value):
    login(client, owner)
    amendment_id = submit_amendment(client, stall, field_name, new_value).json()["data"]["amendment_id"]
    client.post("/api/auth/logout")

    login(client, admin)
    response = client.post(f"/api/amendments/{amendment_id}/approve", json={"notes": "Looks good"})
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "approved"

    db.expire_all()
    updated = db.get(FoodStall, stall.stall_id)
    if field_name == "food_categories":
        assert updated.food_categories == ["Street Food", "Beverages"]
    elif field_name == "address":
        assert db.query(StallLocation).filter(StallLocation.stall_id == stall.stall_id).one().address == "Row Z"
    else:
        assert getattr(updated, field_name) == new_value
    assert decisions[0][0] == owner.email
    assert db.query(AdminLog).filter(AdminLog.entity == "amendment", AdminLog.action == "approve").count() == 1


def test_rejecting_amendment(client, db, admin, owner, stall, login, decisions):
    login(client, owner)
    amendment_id = submit_amendment(client, stall, "name", "Kanto Classics").json()["data"]["amendment_id"]
    client.post("/api/auth/logout")

    login(client, admin)
    assert client.post(f"/api/amendments/{amendment_id}/reject", json={"reason": ""}).status_code == 400
    response = client.post(f"/api/amendments/{amendment_id}/reject", json={"reason": "Name already taken"})
    assert response.json()["data"]["status"] == "rejected"

    db.expire_all()
    assert db.get(AmendmentRequest, amendment_id).current_status_id == STATUS_DECLINED
    assert db.get(FoodStall, stall.stall_id).name == "Kanto Freestyle"
    assert client.post(f"/api/amendments/{amendment_id}/approve").status_code == 400

    rejected = client.get("/api/amendments/", params={"status": "rejected"}).json()["data"]
    assert [r["amendment_id"] for r in rejected] == [amendment_id]


def test_approved_closure_delists_stall(client, db, admin, owner, stall, login, decisions):
    login(client, owner)
    created = client.post("/api/closures/", json={"stall_id": stall.stall_id, "reason": "Moving abroad"})
    assert created.status_code == 201
    duplicate = client.post("/api/closures/", json={"stall_id": stall.stall_id, "reason": "Really"})
    assert duplicate.status_code == 400
    closure_id = created.json()["data"]["closure_id"]
    client.post("/api/auth/logout")

    login(client, admin)
    assert client.post(f"/api/closures/{closure_id}/approve").status_code == 200

    assert client.get(f"/api/stalls/{stall.stall_id}").status_code == 404
    assert client.get("/api/stalls/").json()["data"] == []
    assert decisions[0][2] == "closure"


def test_owner_lists_own_requests(client, owner, stall, login):
    login(client, owner)
    submit_amendment(client, stall, "name", "Kanto Classics")
    client.post("/api/closures/", json={"stall_id": stall.stall_id, "reason": "Retiring"})

    amendments = client.get("/api/amendments/", params={"stall_id": stall.stall_id}).json()["data"]
    closures = client.get("/api/closures/").json()["data"]
    assert len(amendments) == 1
    assert closures[0]["reason"] == "Retiring"


def test_services_look_up_requests_by_their_own_key(db, owner, stall):
    amendments = AmendmentService(db)
    closures = ClosureService(db)
    amendment = amendments.create(owner, stall.stall_id, "description", "Late night isaw and betamax")
    closure = closures.create(owner, stall.stall_id, "Relocating to the next block")

    assert amendments.get_request(amendment.amendment_id).new_value == "Late night isaw and betamax"
    assert closures.get_request(closure.closure_id).reason == "Relocating to the next block"
    assert [r.amendment_id for r in amendments.list_requests(owner)] == [amendment.amendment_id]
    assert [r.closure_id for r in closures.list_requests(owner, "pending")] == [closure.closure_id]
    with pytest.raises(NotFoundError):
        closures.get_request(closure.closure_id + 100)
