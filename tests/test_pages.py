import os

import pytest

import config
from models import STATUS_APPROVED, Application, FoodStall, MenuItem, Review, User


def form_login(client, csrf_token, user, password="Secret123"):
    token = csrf_token(client)
    return client.post("/login", data={"email": user.email, "password": password, "csrf_token": token})


@pytest.mark.parametrize("path", ["/", "/stalls", "/map", "/about", "/terms", "/login", "/signup",
                                  "/forgot-password"])
def test_public_pages_render(client, owner, make_stall, path):
    make_stall(owner)
    response = client.get(path)
    assert response.status_code == 200
    assert config.APP_NAME in response.text


def test_stall_detail_page(client, owner, make_stall, db):
    stall = make_stall(owner, name="Tusok Tusok")
    db.add(MenuItem(stall_id=stall.stall_id, name="Fishball", price=15))
    db.commit()

    response = client.get(f"/stalls/{stall.stall_id}")
    assert response.status_code == 200
    assert "Tusok Tusok" in response.text
    assert "Fishball" in response.text


def test_missing_page_renders_error_template(client):
    response = client.get("/stalls/999")
    assert response.status_code == 404
    assert "text/html" in response.headers["content-type"]
    assert "Stall not found" in response.text


def test_form_post_without_csrf_token_is_rejected(client, enthusiast):
    response = client.post("/login", data={"email": enthusiast.email, "password": "Secret123",
                                           "csrf_token": "forged"})
    assert response.status_code == 403


def test_form_post_with_mismatched_csrf_token_is_rejected(client, enthusiast):
    client.get("/login")
    for token in ("forged", "\u00e9t\u00e9"):
        response = client.post("/login", data={"email": enthusiast.email, "password": "Secret123",
                                               "csrf_token": token})
        assert response.status_code == 403

    # a file upload in place of the token field
    response = client.post("/login", data={"email": enthusiast.email, "password": "Secret123"},
                           files={"csrf_token": ("token.txt", b"abc", "text/plain")})
    assert response.status_code == 403
    assert client.get("/api/auth/check").json()["data"]["authenticated"] is False


def test_form_login_redirects_with_flash(client, csrf_token, enthusiast):
    response = form_login(client, csrf_token, enthusiast)
    assert response.status_code == 200
    assert "Welcome back, Foodie!" in response.text

    # flash messages are shown once
    assert "Welcome back" not in client.get("/").text


def test_form_login_failure_shows_error(client, csrf_token, enthusiast):
    response = form_login(client, csrf_token, enthusiast, password="Wrong1234")
    assert response.status_code == 401
    assert "Invalid email or password" in response.text


def test_admin_login_goes_to_panel(client, csrf_token, admin):
    response = form_login(client, csrf_token, admin)
    assert response.url.path == "/admin"


def test_signup_form(client, csrf_token, db):
    token = csrf_token(client, "/signup")
    invalid = client.post("/signup", data={"name": "Shy", "email": "shy@example.com", "password": "weak",
                                           "confirm_password": "weak", "csrf_token": token})
    assert invalid.status_code == 400
    assert "You must agree to the Terms and Conditions" in invalid.text

    response = client.post("/signup", data={"name": "Shy", "email": "shy@example.com", "password": "Strong123",
                                            "confirm_password": "Strong123", "account_type": "owner",
                                            "terms_agreed": "true", "csrf_token": token})
    assert response.url.path == "/login"
    assert db.query(User).filter(User.email == "shy@example.com").one().type_name == "food_stall_owner"


def test_signup_rejects_malformed_email(client, csrf_token, db):
    token = csrf_token(client, "/signup")
    response = client.post("/signup", data={"name": "Typo", "email": "not-an-email", "password": "Strong123",
                                            "confirm_password": "Strong123", "terms_agreed": "true",
                                            "csrf_token": token})
    assert response.status_code == 400
    assert "Invalid email format" in response.text
    assert db.query(User).filter(User.name == "Typo").count() == 0


def test_verify_email_link(client, db, make_user):
    user = make_user("Pending", verified=False)
    user.verification_token = "verify-me"
    db.commit()

    response = client.get("/verify-email", params={"token": "verify-me"})
    assert "Your email has been verified" in response.text
    db.expire_all()
    assert db.get(User, user.user_id).is_verified is True


def test_protected_pages_redirect_to_login(client):
    for path in ("/my-account", "/my-reviews", "/manage-stall", "/registration-pending"):
        response = client.get(path, follow_redirects=False)
        assert response.status_code == 303
        assert response.headers["location"] == "/login"


def test_review_form_flow(client, db, csrf_token, enthusiast, owner, make_stall):
    stall = make_stall(owner)
    form_login(client, csrf_token, enthusiast)
    token = csrf_token(client, f"/stalls/{stall.stall_id}")

    response = client.post(f"/stalls/{stall.stall_id}/review",
                           data={"action": "submit_review", "rating": "5", "comment": "Best kwek-kwek",
                                 "csrf_token": token})
    assert "Thank you for your review!" in response.text
    review = db.query(Review).one()

    client.post(f"/stalls/{stall.stall_id}/review",
                data={"action": "delete_review", "review_id": str(review.review_id), "csrf_token": token})
    assert db.query(Review).count() == 0


def test_non_owner_cannot_open_register_stall(client, csrf_token, enthusiast):
    form_login(client, csrf_token, enthusiast)
    response = client.get("/register-stall")
    assert "Only food stall owner accounts can register a stall." in response.text


def test_register_stall_form(client, db, csrf_token, owner, png_bytes):
    form_login(client, csrf_token, owner)
    token = csrf_token(client, "/register-stall")
    files = {
        "bir_registration": ("bir.png", png_bytes, "image/png"),
        "business_permit": ("permit.png", png_bytes, "image/png"),
        "dti_sec": ("dti.png", png_bytes, "image/png"),
        "stall_logo": ("logo.png", png_bytes, "image/png"),
    }
    data = {"stall_name": "Balut Bros", "stall_description": "Freshly boiled balut", "location": "Row E",
            "food_categories": ["Street Food"], "csrf_token": token}

    response = client.post("/register-stall", data=data, files=files)
    assert response.url.path == "/registration-pending"
    assert "Balut Bros" in response.text
    assert db.query(Application).count() == 1

    # a pending application sends the owner straight to its status page
    assert client.get("/register-stall").url.path == "/registration-pending"


def test_manage_stall_actions(client, db, csrf_token, owner, make_stall):
    stall = make_stall(owner)
    form_login(client, csrf_token, owner)
    token = csrf_token(client, "/manage-stall")

    client.post("/manage-stall", data={"action": "update_stall_info", "stall_id": str(stall.stall_id),
                                       "hours": "6PM - 2AM", "csrf_token": token})
    client.post("/manage-stall", data={"action": "add_menu_item", "stall_id": str(stall.stall_id),
                                       "item_name": "Kwek-kwek", "item_price": "20", "is_available": "true",
                                       "csrf_token": token})
    response = client.post("/manage-stall", data={"action": "request_amendment",
                                                  "stall_id": str(stall.stall_id), "field_name": "name",
                                                  "new_value": "Kanto Deluxe", "reason": "Rebrand",
                                                  "csrf_token": token})
    assert "Amendment request submitted" in response.text

    db.expire_all()
    assert db.get(FoodStall, stall.stall_id).hours == "6PM - 2AM"
    assert db.query(MenuItem).one().name == "Kwek-kwek"


def test_manage_stall_rejects_infinite_price(client, db, csrf_token, owner, make_stall):
    stall = make_stall(owner)
    form_login(client, csrf_token, owner)
    token = csrf_token(client, "/manage-stall")

    response = client.post("/manage-stall", data={"action": "add_menu_item", "stall_id": str(stall.stall_id),
                                                  "item_name": "Endless Buko", "item_price": "inf",
                                                  "csrf_token": token})
    assert "Price must be a number" in response.text
    assert db.query(MenuItem).count() == 0
    assert client.get(f"/api/stalls/{stall.stall_id}/menu").status_code == 200


def test_profile_update_is_skipped_when_image_is_rejected(client, db, csrf_token, enthusiast, file_exists):
    form_login(client, csrf_token, enthusiast)
    token = csrf_token(client, "/my-account")

    response = client.post("/my-account", data={"action": "update_profile", "name": "Renamed Foodie",
                                                "email": "renamed@example.com", "csrf_token": token},
                           files={"profile_image": ("me.png", b"not an image", "image/png")})
    assert "Profile image must be a valid image" in response.text

    db.expire_all()
    user = db.get(User, enthusiast.user_id)
    assert (user.name, user.email, user.profile_image) == ("Foodie", "foodie@example.com", None)
    assert not file_exists("profiles") or not os.listdir(os.path.join(config.UPLOAD_DIR, "profiles"))


def test_profile_rejects_malformed_email(client, db, csrf_token, enthusiast):
    form_login(client, csrf_token, enthusiast)
    token = csrf_token(client, "/my-account")

    response = client.post("/my-account", data={"action": "update_profile", "email": "foodie-at-example",
                                                "csrf_token": token})
    assert "Invalid email format" in response.text
    db.expire_all()
    assert db.get(User, enthusiast.user_id).email == "foodie@example.com"


@pytest.mark.parametrize("tab", ["pending-applications", "all-applications", "recent-reviews", "amendments",
                                 "closures", "users", "logs"])
def test_admin_panel_tabs(client, csrf_token, admin, owner, make_application, tab):
    make_application(owner)
    form_login(client, csrf_token, admin)

    response = client.get("/admin", params={"tab": tab})
    assert response.status_code == 200
    assert "Admin Panel" in response.text


def test_admin_panel_requires_admin(client, csrf_token, enthusiast):
    form_login(client, csrf_token, enthusiast)
    response = client.get("/admin")
    assert response.url.path == "/"
    assert "Admin privileges required" in response.text


def test_admin_panel_approves_application(client, db, csrf_token, admin, owner, make_application):
    application = make_application(owner)
    form_login(client, csrf_token, admin)
    token = csrf_token(client, "/admin")

    response = client.post("/admin", data={"action": "approve", "target_id": str(application.application_id),
                                            "notes": "", "tab": "pending-applications", "csrf_token": token})
    assert "Application approved successfully" in response.text

    db.expire_all()
    assert db.get(Application, application.application_id).current_status_id == STATUS_APPROVED
    assert db.query(FoodStall).count() == 1

    again = client.post("/admin", data={"action": "approve", "target_id": str(application.application_id),
                                        "tab": "pending-applications", "csrf_token": token})
    assert "Error: Only pending applications can be approved" in again.text


def test_maintenance_mode(client, monkeypatch):
    monkeypatch.setattr(config, "MAINTENANCE_MODE", True)

    page = client.get("/")
    assert page.status_code == 503
    assert "maintenance" in page.text.lower()

    api = client.get("/api/stalls/")
    assert api.status_code == 503
    assert api.json()["success"] is False


def test_api_client_covers_every_resource(client):
    script = client.get("/static/js/api-client.js")
    assert script.status_code == 200
    for call in ("createApplication", "approveApplication", "rejectApplication", "archiveApplication",
                 "createAmendment", "approveAmendment", "rejectAmendment",
                 "createClosure", "approveClosure", "rejectClosure",
                 "createStall", "updateStall", "deleteStall", "changePassword", "getReview"):
        assert f"{call}(" in script.text
