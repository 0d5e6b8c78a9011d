import io
import os
import re
import shutil
import tempfile

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="buzzarfeed-uploads-")
os.environ["MAIL_DRIVER"] = "log"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["MAINTENANCE_MODE"] = "false"

import pytest
from fastapi.testclient import TestClient
from PIL import Image

import config
from auth import get_password_hash
from database import Base, SessionLocal, engine
from main import app
from migrate_db import seed_lookup_tables
from models import (
    STATUS_PENDING,
    TYPE_ADMIN,
    TYPE_ENTHUSIAST,
    TYPE_OWNER,
    Application,
    FoodStall,
    StallLocation,
    User,
    UserType,
)

PASSWORD = "Secret123"


@pytest.fixture(autouse=True)
def setup_database():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    seed_lookup_tables(session)
    session.close()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clean_uploads():
    yield
    for entry in os.listdir(config.UPLOAD_DIR):
        path = os.path.join(config.UPLOAD_DIR, entry)
        if os.path.isdir(path):
            shutil.rmtree(path)
        else:
            os.remove(path)


@pytest.fixture
def db(setup_database):
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def client():
    # no context manager: the lifespan would run init_db against the real settings
    return TestClient(app)


@pytest.fixture
def make_user(db):
    def _make(name, type_name=TYPE_ENTHUSIAST, verified=True, active=True, password=PASSWORD):
        user_type = db.query(UserType).filter(UserType.type_name == type_name).one()
        user = User(
            name=name,
            email=f"{name.lower()}@example.com",
            hashed_password=get_password_hash(password),
            user_type_id=user_type.user_type_id,
            is_verified=verified,
            is_active=active,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user
    return _make


@pytest.fixture
def enthusiast(make_user):
    return make_user("Foodie")


@pytest.fixture
def owner(make_user):
    return make_user("Owner", TYPE_OWNER)


@pytest.fixture
def admin(make_user):
    return make_user("Admin", TYPE_ADMIN)


@pytest.fixture
def login():
    def _login(client, user, password=PASSWORD):
        response = client.post("/api/auth/login", json={"email": user.email, "password": password})
        assert response.status_code == 200, response.text
        return response
    return _login


@pytest.fixture
def csrf_token():
    def _token(client, page="/login"):
        response = client.get(page)
        match = re.search(r'<meta name="csrf-token" content="([^"]+)"', response.text)
        assert match, "page did not render a csrf token"
        return match.group(1)
    return _token


@pytest.fixture
def make_stall(db):
    def _make(owner, name="Kanto Freestyle", categories=("Street Food",), address="Row A", **fields):
        stall = FoodStall(owner_id=owner.user_id, name=name, description=f"{name} description",
                          food_categories=list(categories), is_active=True, **fields)
        db.add(stall)
        db.flush()
        db.add(StallLocation(stall_id=stall.stall_id, address=address, latitude=10.0, longitude=20.0))
        db.commit()
        db.refresh(stall)
        return stall
    return _make


@pytest.fixture
def png_bytes():
    buffer = io.BytesIO()
    Image.new("RGB", (8, 8), (232, 93, 4)).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def make_application(db, png_bytes):
    """A pending application whose documents exist on disk"""
    def _make(applicant, stall_name="Sizzling Sisig"):
        paths = {}
        for column in ("bir_registration_path", "business_permit_path", "dti_sec_path", "stall_logo_path"):
            relative = f"applications/{applicant.user_id}/{column}.png"
            full = os.path.join(config.UPLOAD_DIR, relative)
            os.makedirs(os.path.dirname(full), exist_ok=True)
            with open(full, "wb") as f:
                f.write(png_bytes)
            paths[column] = relative

        application = Application(
            user_id=applicant.user_id,
            stall_name=stall_name,
            stall_description="Crispy pork sisig on a hot plate",
            location="Row C, Stall 4",
            map_x=45.5,
            map_y=60.25,
            food_categories=["Rice Meals", "Street Food"],
            current_status_id=STATUS_PENDING,
            **paths,
        )
        db.add(application)
        db.commit()
        db.refresh(application)
        return application
    return _make


def upload_exists(relative_path):
    return os.path.exists(os.path.join(config.UPLOAD_DIR, relative_path))


@pytest.fixture
def file_exists():
    return upload_exists
