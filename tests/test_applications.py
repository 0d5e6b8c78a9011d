import os

import pytest

import config
from email_service import email_service
from errors import ValidationError
from models import (
    STATUS_APPROVED,
    STATUS_PENDING,
    AdminLog,
    Application,
    ApplicationReview,
    FoodStall,
    StallLocation,
)
from services.admin_log_service import AdminLogService
from services.application_service import ApplicationService

FORM = {
    "stall_name": "Sizzling Sisig",
    "stall_description": "Crispy pork sisig on a hot plate",
    "location": "Row C, Stall 4",
    "map_x": "45.5",
    "map_y": "60.25",
    "food_categories": ["Rice Meals", "Street Food"],
}


def document_files(png):
    return {
        "bir_registration": ("bir.png", png, "image/png"),
        "business_permit": ("permit.pdf", b"%PDF-1.4 permit", "application/pdf"),
        "dti_sec": ("dti.png", png, "image/png"),
        "stall_logo": ("logo.png", png, "image/png"),
    }


def test_owner_submits_application(client, db, owner, login, png_bytes, file_exists):
    login(client, owner)
    response = client.post("/api/applications/", data=FORM, files=document_files(png_bytes))

    assert response.status_code == 201, response.text
    data = response.json()["data"]
    assert data["status"] == "pending"
    assert data["food_categories"] == ["Rice Meals", "Street Food"]

    application = db.query(Application).one()
    assert application.map_x == 45.5
    for path in application.document_paths:
        assert path.startswith(f"applications/{owner.user_id}/")
        assert file_exists(path)


def test_submission_lists_every_missing_field(client, owner, login):
    login(client, owner)
    response = client.post("/api/applications/", data={"stall_name": "X"})

    assert response.status_code == 400
    errors = response.json()["errors"]
    assert "Stall name must be at least 2 characters" in errors
    assert "Please select at least one food category" in errors
    assert "Stall Logo is required" in errors


def test_logo_must_be_an_image(client, db, owner, login, png_bytes):
    login(client, owner)
    files = document_files(png_bytes)
    files["stall_logo"] = ("logo.png", b"not really a png", "image/png")

    response = client.post("/api/applications/", data=FORM, files=files)
    assert response.status_code == 400
    assert db.query(Application).count() == 0
    assert not os.listdir(os.path.join(config.UPLOAD_DIR, "applications", str(owner.user_id)))


def test_enthusiast_cannot_apply(client, enthusiast, login, png_bytes):
    login(client, enthusiast)
    response = client.post("/api/applications/", data=FORM, files=document_files(png_bytes))
    assert response.status_code == 403


def test_one_pending_application_at_a_time(client, owner, login, make_application, png_bytes):
    make_application(owner)
    login(client, owner)
    response = client.post("/api/applications/", data=FORM, files=document_files(png_bytes))
    assert response.status_code == 400
    assert "pending application" in response.json()["message"]


def test_applicants_only_see_their_own(client, owner, make_user, login, make_application):
    application = make_application(owner)
    login(client, make_user("Rival", "food_stall_owner"))

    assert client.get("/api/applications/").json()["data"] == []
    assert client.get(f"/api/applications/{application.application_id}").status_code == 403


def test_approve_creates_live_stall(client, db, admin, owner, login, make_application, monkeypatch):
    sent = []
    monkeypatch.setattr(email_service, "send_application_approval_email", lambda *args: sent.append(args) or True)
    application = make_application(owner)
    login(client, admin)

    response = client.post(f"/api/applications/{application.application_id}/approve", json={"notes": "Welcome"})
    assert response.status_code == 200, response.text
    stall = response.json()["data"]
    assert stall["name"] == "Sizzling Sisig"
    assert (stall["latitude"], stall["longitude"]) == (45.5, 60.25)
    assert stall["owner_id"] == owner.user_id

    db.expire_all()
    assert db.query(Application).one().current_status_id == STATUS_APPROVED
    assert db.query(ApplicationReview).one().notes == "Welcome"
    assert db.query(AdminLog).filter(AdminLog.action == "approve").count() == 1
    assert sent[0][0] == owner.email

    again = client.post(f"/api/applications/{application.application_id}/approve")
    assert again.status_code == 400


def test_approve_is_all_or_nothing(db, admin, owner, make_application, monkeypatch):
    application = make_application(owner)
    application_id = application.application_id

    def fail(self, user_id):
        raise RuntimeError("database went away")

    monkeypatch.setattr(ApplicationService, "_touch_user", fail)
    with pytest.raises(RuntimeError):
        ApplicationService(db).approve_application(admin, application_id)

    db.expire_all()
    assert db.query(FoodStall).count() == 0
    assert db.query(StallLocation).count() == 0
    assert db.query(ApplicationReview).count() == 0
    assert db.query(AdminLog).count() == 0
    assert db.get(Application, application_id).current_status_id == STATUS_PENDING


def test_decline_removes_row_and_documents(client, db, admin, owner, login, make_application, file_exists):
    application = make_application(owner)
    paths = application.document_paths
    login(client, admin)

    response = client.post(f"/api/applications/{application.application_id}/reject",
                           json={"reason": "Documents are unreadable"})
    assert response.status_code == 200

    db.expire_all()
    assert db.query(Application).count() == 0
    assert db.query(AdminLog).filter(AdminLog.action == "decline").count() == 1
    for path in paths:
        assert not file_exists(path)
        assert not file_exists(path + ".deleting")


def test_decline_failure_keeps_row_and_documents(db, admin, owner, make_application, monkeypatch, file_exists):
    application = make_application(owner)
    application_id = application.application_id
    paths = application.document_paths

    def fail(self, *args, **kwargs):
        raise RuntimeError("log table locked")

    monkeypatch.setattr(AdminLogService, "log_application_decline", fail)
    with pytest.raises(RuntimeError):
        ApplicationService(db).decline_application(admin, application_id, "Incomplete")

    db.expire_all()
    assert db.get(Application, application_id) is not None
    for path in paths:
        assert file_exists(path)


def test_reject_requires_reason(client, db, admin, owner, login, make_application, file_exists):
    application = make_application(owner)
    application_id = application.application_id
    paths = application.document_paths
    login(client, admin)
    for reason in ("", "   "):
        response = client.post(f"/api/applications/{application_id}/reject", json={"reason": reason})
        assert response.status_code == 400

    with pytest.raises(ValidationError):
        ApplicationService(db).decline_application(admin, application_id, "  \n ")
    db.expire_all()
    assert db.get(Application, application_id) is not None
    for path in paths:
        assert file_exists(path)


def test_archive(client, db, admin, owner, login, make_application):
    application = make_application(owner)
    login(client, admin)

    response = client.post(f"/api/applications/{application.application_id}/archive")
    assert response.json()["data"]["status"] == "archived"
    assert client.get("/api/applications/", params={"status": "pending"}).json()["data"] == []
    assert client.post(f"/api/applications/{application.application_id}/archive").status_code == 400


def test_owner_updates_pending_application(client, owner, login, make_application):
    application = make_application(owner)
    login(client, owner)

    response = client.put(f"/api/applications/{application.application_id}",
                          json={"stall_name": "Sisig Supreme", "food_categories": ["Rice Meals"]})
    assert response.status_code == 200
    assert response.json()["data"]["stall_name"] == "Sisig Supreme"
