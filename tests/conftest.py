"""
Pytest fixtures for userapi tests
"""
import pytest
from datetime import datetime
from flask import Flask
from userapi.database import seed_clients
from userapi.oauth import OAuth2Model
from userapi.server import OAuth2Server
from userapi.storage import Storage
from userapi.types import User
from userapi.users import UserRepository, hash_password

PASSWORD_CLIENT = {
    "client_id": "b921b25ebe3ee70c6b1",
    "client_secret": "8f4d45d9a363d922b2eb7",
    "grants": "password,refresh_token",
    "redirect_uris": "",
}

SERVICE_CLIENT = {
    "client_id": "b921b25ebe3ee70c6b2",
    "client_secret": "8f4d45d9a363d922b2eb8",
    "grants": "client_credentials",
    "redirect_uris": "https://example.org/callback https://example.org/other",
}

@pytest.fixture
def storage():
    storage = Storage("sqlite://")
    storage.create_all()
    seed_clients(storage, [PASSWORD_CLIENT, SERVICE_CLIENT])
    yield storage
    storage.close()

@pytest.fixture
def alice(storage):
    user_id = storage.table(User).insert(
        name="Alice",
        username="alice",
        password=hash_password("secret"),
        created_at=datetime(2026, 1, 1, 12, 0, 0))
    return user_id

@pytest.fixture
def users(storage):
    return UserRepository(storage)

@pytest.fixture
def model(storage):
    return OAuth2Model(storage)

@pytest.fixture
def server(model):
    return OAuth2Server(model)

@pytest.fixture
def app():
    app = Flask(__name__)
    app.testing = True
    return app
