from __future__ import annotations

import sys
from io import BytesIO
from pathlib import Path

import pytest
from werkzeug.datastructures import FileStorage

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from app import create_app
from app.core.config import Config
from app.core.context import RequestContext
from app.core.extensions import db
from app.core.models import Program, User, seed_demo_data
from app.review.catalogue import required_document_types
from app.review.services import create_application

PASSWORDS = {
    "admin@portal.local": "admin123",
    "zoning@portal.local": "zoning123",
    "zoning2@portal.local": "zoning123",
    "building@portal.local": "building123",
    "building2@portal.local": "building123",
    "housing@portal.local": "housing123",
    "inspector@portal.local": "inspector123",
    "citizen@portal.local": "citizen123",
    "citizen2@portal.local": "citizen123",
}

ZONING_PAYLOAD = {
    "program": "zoning_clearance",
    "first_name": "Maria",
    "last_name": "Santos",
    "email": "maria.santos@example.com",
    "contact_number": "09171234567",
    "address": "12 Rizal St., Poblacion",
    "project_type": "residential",
    "project_description": "Two-storey dwelling",
    "project_location": "Lot 4, Block 2, San Isidro",
    "total_lot_area_sqm": "240",
    "total_floor_area_sqm": "150",
}

HOUSING_PAYLOAD = {
    "program": "housing_assistance",
    "first_name": "Jose",
    "last_name": "Reyes",
    "email": "jose.reyes@example.com",
    "contact_number": "09181234567",
    "address": "Purok 3, Bagong Silang",
    "birthdate": "1958-03-14",
    "household_size": "5",
    "years_at_address": "10",
    "monthly_income": "12000",
    "total_household_income": "18000",
    "housing_type": "informal",
    "rooms": "2",
    "floor_area": "25",
    "program_type": "socialized_housing",
    "requested_units": "1",
    "is_pwd": "true",
}


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SECRET_KEY = "test-secret"
    LOG_LEVEL = "WARNING"


@pytest.fixture
def app(tmp_path):
    app = create_app(TestConfig)
    app.config["STORAGE_ROOT"] = str(tmp_path / "storage")
    with app.app_context():
        db.create_all()
        seed_demo_data(db.session)
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def make_file(name: str = "scan.pdf", content: bytes = b"%PDF-1.4 test document") -> FileStorage:
    return FileStorage(stream=BytesIO(content), filename=name, content_type="application/pdf")


@pytest.fixture
def ctx_for(app):
    def _ctx(email: str) -> RequestContext:
        user = User.query.filter_by(email=email).one()
        return RequestContext(actor_id=user.id, role=user.role, ip_address="127.0.0.1", user_agent="pytest")

    return _ctx


@pytest.fixture
def user_id(app):
    def _user_id(email: str) -> int:
        return User.query.filter_by(email=email).one().id

    return _user_id


@pytest.fixture
def login(client):
    def _login(email: str):
        return client.post("/auth/login", json={"email": email, "password": PASSWORDS[email]})

    return _login


@pytest.fixture
def zoning_application(app, ctx_for):
    files = {doc: make_file(f"{doc}.pdf") for doc in required_document_types(Program.ZONING_CLEARANCE)}
    application = create_application(dict(ZONING_PAYLOAD), files, ctx_for("citizen@portal.local"))
    return application.id


@pytest.fixture
def housing_application(app, ctx_for):
    files = {doc: make_file(f"{doc}.pdf") for doc in required_document_types(Program.HOUSING_ASSISTANCE)}
    application = create_application(dict(HOUSING_PAYLOAD), files, ctx_for("citizen2@portal.local"))
    return application.id


@pytest.fixture
def upload():
    return make_file
