import os
import sys
import time
from datetime import timedelta

os.environ.setdefault("SECRET_KEY", "0123456789abcdef0123456789abcdef0123456789abcdef0123456789abcdef")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("ADMIN_EMAIL", "owner@example.com")

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

import httpx
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi import FastAPI
from fastapi.testclient import TestClient
from jose import jwk
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from hzsite import models  # noqa: F401
from hzsite.api import deps
from hzsite.api.admin import router as admin_router
from hzsite.api.auth import router as auth_router
from hzsite.database import Base
from hzsite.errors import register_exception_handlers
from hzsite.services.jwks import JWKSClient, NullCache
from hzsite.services.tokens import TokenCodec

TEST_SECRET = os.environ["SECRET_KEY"]


class FakeNotifier:
    """Captures OTP deliveries instead of sending them."""

    def __init__(self):
        self.sent = []

    def send(self, channel, destination, code, expires_in_seconds):
        self.sent.append({"channel": channel, "destination": destination, "code": code})

    def last_code(self, destination):
        for message in reversed(self.sent):
            if message["destination"] == destination:
                return message["code"]
        raise AssertionError(f"no OTP sent to {destination}")


class RSAKeyPair:
    def __init__(self, kid: str):
        private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        self.kid = kid
        self.private_pem = private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        ).decode("utf-8")
        public_pem = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        ).decode("utf-8")
        self.public_jwk = {**jwk.construct(public_pem, "RS256").to_dict(), "kid": kid, "use": "sig"}


def build_jwks_client(keys, calls=None, cache=None, clock=time.monotonic) -> JWKSClient:
    """JWKS client served by an in-process transport."""

    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(str(request.url))
        return httpx.Response(200, json={"keys": [key.public_jwk for key in keys]})

    http_client = httpx.Client(transport=httpx.MockTransport(handler))
    return JWKSClient(cache or NullCache(), http_client=http_client, clock=clock)


@pytest.fixture(scope="session")
def rsa_key():
    return RSAKeyPair("test-key-1")


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def codec():
    return TokenCodec(TEST_SECRET, algorithm="HS256", default_ttl=timedelta(days=7))


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def app(session_factory, codec, notifier):
    app = FastAPI()
    app.include_router(auth_router, prefix="/api")
    app.include_router(admin_router, prefix="/api")
    register_exception_handlers(app)

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[deps.get_db] = override_get_db
    app.dependency_overrides[deps.get_token_codec] = lambda: codec
    app.dependency_overrides[deps.get_notifier] = lambda: notifier
    return app


@pytest.fixture
def client(app):
    # Session cookies are Secure, so the jar only replays them over https.
    return TestClient(app, base_url="https://testserver")
