"""
Pytest fixtures for the stock ledger tests.

Every test gets a fresh file-backed SQLite database, seeded users, two
projects with racks, and fake mail / broadcast transports.
"""

import uuid

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from stockledger.api.dependencies import get_session_factory
from stockledger.database import get_db, init_db, make_engine
from stockledger.models.product import Product
from stockledger.models.user import User
from stockledger.schemas.catalog import ProjectCreate
from stockledger.services import catalog_service, mail_service, notification_service
from stockledger.services.auth_service import create_access_token, hash_password
from stockledger.services.refs import encode_entries
from stockledger.services.side_effects import SideEffects

PASSWORD = "secret"
PASSWORD_HASH = hash_password(PASSWORD)


class FakeMailer:
    def __init__(self):
        self.sent = []

    def send(self, to, subject, html_body, attachments=None):
        self.sent.append({"to": to, "subject": subject, "html": html_body, "attachments": attachments or []})
        return True


class FakeBroadcaster:
    def __init__(self):
        self.delivered = []

    def deliver(self, message):
        self.delivered.append(message)
        return []


@pytest.fixture
def engine(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
    init_db(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def effects(session_factory):
    return SideEffects(session_factory)


@pytest.fixture
def run_effects(db, effects):
    """Run queued effects, then end the test session's snapshot so their writes are visible."""

    def run():
        failed = effects.run()
        db.rollback()
        return failed

    return run


@pytest.fixture(autouse=True)
def mailer(monkeypatch):
    fake = FakeMailer()
    monkeypatch.setattr(mail_service, "mailer", fake)
    return fake


@pytest.fixture(autouse=True)
def broadcaster(monkeypatch):
    fake = FakeBroadcaster()
    monkeypatch.setattr(notification_service, "broadcaster", fake)
    return fake


def _user(db, username, role, email=None):
    user = User(
        username=username,
        email=email if email is not None else f"{username}@example.com",
        display_name=username.capitalize(),
        password_hash=PASSWORD_HASH,
        role=role,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def admin(db):
    return _user(db, "admin", "admin")


@pytest.fixture
def manager(db):
    return _user(db, "manager", "manager")


@pytest.fixture
def keeper(db):
    return _user(db, "keeper", "keeper")


@pytest.fixture
def staff(db):
    return _user(db, "staff", "staff")


@pytest.fixture
def product(db):
    p = Product(sku="BOLT-10", name="Hex Bolt M10", unit="EA", price=0.5)
    db.add(p)
    db.commit()
    db.refresh(p)
    return p


@pytest.fixture
def other_product(db):
    p = Product(sku="NUT-10", name="Hex Nut M10", unit="EA", price=0.2)
    db.add(p)
    db.commit()
    db.refresh(p)
    return p


@pytest.fixture
def project(db, manager, keeper):
    proj = catalog_service.create_project(db, ProjectCreate(name="North Site"))
    catalog_service.add_member(db, proj.id, manager.id)
    catalog_service.add_member(db, proj.id, keeper.id)
    return proj


@pytest.fixture
def rack(db, project):
    return catalog_service.add_rack(db, project.id, "A1")


@pytest.fixture
def rack2(db, project):
    return catalog_service.add_rack(db, project.id, "A2")


@pytest.fixture
def other_project(db):
    return catalog_service.create_project(db, ProjectCreate(name="South Site"))


@pytest.fixture
def other_rack(db, other_project):
    return catalog_service.add_rack(db, other_project.id, "B1")


def put_entries(db, rack, entries):
    """Overwrite a rack's stored entries (any encoding) for test setup."""
    rack.products = encode_entries(entries)
    db.commit()
    db.refresh(rack)


@pytest.fixture
def set_entries(db):
    return lambda rack, entries: put_entries(db, rack, entries)


@pytest.fixture
def stocked(db, rack, rack2, product):
    """5 units of product on A1 and 4 on A2."""
    put_entries(db, rack, [{"product": uuid.UUID(product.id), "stock": 5}])
    put_entries(db, rack2, [{"product": uuid.UUID(product.id), "stock": 4}])
    return rack, rack2


def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token(user.id, user.username, user.role)}"}


@pytest.fixture
def headers():
    return auth_headers


@pytest.fixture
def client(session_factory):
    from stockledger.main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    yield TestClient(app)
    app.dependency_overrides.clear()
