from datetime import datetime, timedelta

from models import ResetToken, SessionToken, User

REGISTRATION = {
    "name": "New Foodie",
    "email": "new.foodie@example.com",
    "password": "Tasty1234",
    "confirm_password": "Tasty1234",
    "account_type": "enthusiast",
    "terms_agreed": True,
}


def test_register_creates_unverified_user(client, db):
    response = client.post("/api/auth/register", json=REGISTRATION)

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["data"]["user_type"] == "food_enthusiast"
    assert body["data"]["is_verified"] is False

    user = db.query(User).filter(User.email == REGISTRATION["email"]).one()
    assert user.verification_token
    assert user.hashed_password != REGISTRATION["password"]


def test_register_owner_account(client):
    response = client.post("/api/auth/register", json={**REGISTRATION, "account_type": "owner"})
    assert response.json()["data"]["user_type"] == "food_stall_owner"


def test_register_reports_every_problem(client):
    payload = {**REGISTRATION, "password": "short", "confirm_password": "different", "terms_agreed": False}
    response = client.post("/api/auth/register", json=payload)

    assert response.status_code == 400
    errors = response.json()["errors"]
    assert "Passwords do not match" in errors
    assert "You must agree to the Terms and Conditions" in errors
    assert "Password must contain at least one number" in errors


def test_register_rejects_duplicate_email(client, enthusiast):
    response = client.post("/api/auth/register", json={**REGISTRATION, "email": enthusiast.email.upper()})
    assert response.status_code == 400
    assert "Email already registered" in response.json()["errors"]


def test_verify_email(client, db):
    client.post("/api/auth/register", json=REGISTRATION)
    token = db.query(User).filter(User.email == REGISTRATION["email"]).one().verification_token

    response = client.post("/api/auth/verify-email", json={"token": token})
    assert response.status_code == 200
    assert response.json()["data"]["is_verified"] is True

    again = client.post("/api/auth/verify-email", json={"token": token})
    assert again.status_code == 404


def test_login_and_check(client, enthusiast, db):
    response = client.post("/api/auth/login", json={"email": enthusiast.email, "password": "Secret123"})
    assert response.status_code == 200
    assert response.json()["data"]["name"] == "Foodie"
    assert db.query(SessionToken).filter(SessionToken.user_id == enthusiast.user_id).count() == 1

    check = client.get("/api/auth/check").json()["data"]
    assert check["authenticated"] is True
    assert check["user"]["email"] == enthusiast.email


def test_login_wrong_password(client, enthusiast):
    response = client.post("/api/auth/login", json={"email": enthusiast.email, "password": "Wrong1234"})
    assert response.status_code == 401
    assert response.json() == {"success": False, "message": "Invalid email or password", "errors": []}


def test_login_deactivated_account(client, make_user):
    user = make_user("Sleepy", active=False)
    response = client.post("/api/auth/login", json={"email": user.email, "password": "Secret123"})
    assert response.status_code == 401
    assert "deactivated" in response.json()["message"]


def test_logout_removes_session_token(client, enthusiast, login, db):
    login(client, enthusiast)
    client.post("/api/auth/logout")

    assert db.query(SessionToken).count() == 0
    assert client.get("/api/auth/check").json()["data"]["authenticated"] is False


def test_expired_session_is_rejected(client, enthusiast, login, db):
    login(client, enthusiast)
    db.query(SessionToken).update({SessionToken.expires_at: datetime.now() - timedelta(minutes=1)})
    db.commit()

    response = client.get("/api/users/profile")
    assert response.status_code == 401


def test_profile_requires_login(client):
    response = client.get("/api/users/profile")
    assert response.status_code == 401
    assert response.json()["success"] is False


def test_forgot_password_is_silent_for_unknown_email(client, db):
    response = client.post("/api/auth/forgot-password", json={"email": "nobody@example.com"})
    assert response.status_code == 200
    assert db.query(ResetToken).count() == 0


def test_password_reset_flow(client, enthusiast, db):
    client.post("/api/auth/forgot-password", json={"email": enthusiast.email})
    reset = db.query(ResetToken).one()
    assert reset.expires_at <= datetime.now() + timedelta(hours=1)

    payload = {"token": reset.token, "password": "Fresh4567", "confirm_password": "Fresh4567"}
    assert client.post("/api/auth/reset-password", json=payload).status_code == 200

    login = client.post("/api/auth/login", json={"email": enthusiast.email, "password": "Fresh4567"})
    assert login.status_code == 200

    reused = client.post("/api/auth/reset-password", json=payload)
    assert reused.status_code == 400


def test_expired_reset_token(client, enthusiast, db):
    db.add(ResetToken(user_id=enthusiast.user_id, token="expired-token",
                      expires_at=datetime.now() - timedelta(minutes=5)))
    db.commit()

    payload = {"token": "expired-token", "password": "Fresh4567", "confirm_password": "Fresh4567"}
    response = client.post("/api/auth/reset-password", json=payload)
    assert response.status_code == 400
    assert "expired" in response.json()["message"]
