import os, tempfile
import pytest

# point both services at throwaway SQLite files before the app modules import
_tmpdir = tempfile.mkdtemp()
os.environ["DATABASE_URL"] = f"sqlite:///{_tmpdir}/main.db"
os.environ["VISUAL_DATABASE_URL"] = f"sqlite:///{_tmpdir}/visual.db"
os.environ["SECRET_KEY"] = "test-secret"

from fastapi.testclient import TestClient

from main import app
from visual_api import app as visual_app, get_upload_assembler
from db import Base, VisualBase, engine, visual_engine, SessionLocal, VisualSessionLocal
from uploads import UploadAssembler, InMemoryUploadStore
from visual_client import VisualClient, get_visual_client

TEST_USER = {"name": "testUser", "password": "testPassword", "confirm_password": "testPassword"}
TEST_USER2 = {"name": "testUser2", "password": "testPassword2", "confirm_password": "testPassword2"}


@pytest.fixture(autouse=True)
def reset_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    VisualBase.metadata.drop_all(bind=visual_engine)
    VisualBase.metadata.create_all(bind=visual_engine)
    yield

@pytest.fixture
def db_session():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

@pytest.fixture
def visual_db_session():
    db = VisualSessionLocal()
    try:
        yield db
    finally:
        db.close()

@pytest.fixture
def assembler():
    return UploadAssembler(InMemoryUploadStore())

@pytest.fixture
def visual(assembler):
    """TestClient for the visualization service."""
    visual_app.dependency_overrides[get_upload_assembler] = lambda: assembler
    yield TestClient(visual_app)
    visual_app.dependency_overrides.pop(get_upload_assembler, None)

@pytest.fixture
def visual_client(visual):
    # the main API talks to the in-process visualization app instead of the network
    return VisualClient(base_url="http://testserver", session=visual)

@pytest.fixture
def client(visual_client):
    app.dependency_overrides[get_visual_client] = lambda: visual_client
    yield TestClient(app)
    app.dependency_overrides.pop(get_visual_client, None)


def _login(client, credentials):
    r = client.post("/users", json=credentials)
    assert r.status_code == 201, r.text
    body = r.json()
    return {"id": body["id"], "token": body["token"],
            "headers": {"Authorization": f"Bearer {body['token']}"}}

@pytest.fixture
def user(client):
    return _login(client, TEST_USER)

@pytest.fixture
def other_user(client):
    return _login(client, TEST_USER2)
