"""
Shared fixtures: an in-memory database, a controllable clock and fake
verification partners wired onto a fresh app per test.
"""
import base64
import os
from datetime import datetime, timedelta

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("KMS_PROVIDER", "local")
os.environ.setdefault("LOCAL_KMS_MASTER_KEY", base64.b64encode(b"k" * 32).decode())
os.environ.setdefault("SECRET_KEY", "test-secret-key-that-is-long-enough-for-hs256")
os.environ.setdefault("CLEANUP_ENABLED", "false")

import pytest
from httpx import AsyncClient, ASGITransport

from bandhan_auth.database import Database
from bandhan_auth.errors import ProviderUnavailable
from bandhan_auth.main import create_app
from bandhan_auth.services.liveness import LivenessChecker, LivenessResult
from bandhan_auth.services.sms_provider import OtpProvider
from bandhan_auth.services.vault import CredentialVault, LocalKeyProvider

VALID_OTP = "123456"
TEST_PHONE = "+919876543210"


class FakeClock:
    """Callable clock that only moves when told to"""

    def __init__(self, now: datetime = datetime(2026, 1, 15, 10, 0, 0)):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class FakeOtpProvider(OtpProvider):
    def __init__(self):
        self.sent = []
        self.confirmed = []
        self.unavailable = False

    async def send_code(self, phone: str) -> str:
        if self.unavailable:
            raise ProviderUnavailable()
        self.sent.append(phone)
        return f"ref-{len(self.sent)}"

    async def confirm(self, phone: str, provider_ref: str, code: str) -> bool:
        if self.unavailable:
            raise ProviderUnavailable()
        self.confirmed.append(code)
        return code == VALID_OTP


class FakeDigiLocker:
    ACCESS_TOKEN = "dl-access-token-7f3a9c"

    def __init__(self):
        self.has_identity = True
        self.exchanged = []

    def get_authorization_url(self, state: str) -> str:
        return f"https://digilocker.test/authorize?state={state}"

    async def exchange_code_for_token(self, code: str) -> str:
        self.exchanged.append(code)
        return self.ACCESS_TOKEN

    async def has_verified_identity(self, access_token: str) -> bool:
        return self.has_identity

    async def aclose(self):
        pass


class FakeLiveness(LivenessChecker):
    def __init__(self):
        self.result = LivenessResult(
            is_live=True,
            confidence=0.97,
            checks={"faceDetected": True, "eyeMovement": True, "headMovement": True, "depthAnalysis": True},
        )

    async def check(self, video: bytes, mime_type: str) -> LivenessResult:
        return self.result


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def vault():
    return CredentialVault(LocalKeyProvider(os.urandom(32)))


@pytest.fixture
async def database():
    db = Database("sqlite+aiosqlite:///:memory:", environment="test")
    await db.create_all()
    yield db
    await db.dispose()


@pytest.fixture
async def session(database):
    async with database.session_factory() as s:
        yield s


@pytest.fixture
def otp_provider():
    return FakeOtpProvider()


@pytest.fixture
def digilocker():
    return FakeDigiLocker()


@pytest.fixture
def liveness():
    return FakeLiveness()


@pytest.fixture
def app(database, clock, otp_provider, digilocker, vault, liveness):
    """Fresh app per test; ASGITransport does not run the lifespan"""
    application = create_app()
    application.state.db = database
    application.state.clock = clock
    application.state.otp_provider = otp_provider
    application.state.digilocker = digilocker
    application.state.vault = vault
    application.state.liveness = liveness
    return application


@pytest.fixture
async def client(app):
    """Create async test client."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as ac:
        yield ac


@pytest.fixture
def login(client):
    """Send and redeem an OTP; returns the verify response body"""

    async def _login(phone: str = TEST_PHONE) -> dict:
        sent = await client.post("/auth/phone-otp/send", json={"phone": phone})
        assert sent.status_code == 200, sent.text
        verified = await client.post("/auth/phone-otp/verify", json={"phone": phone, "otp": VALID_OTP})
        assert verified.status_code == 200, verified.text
        return verified.json()

    return _login
