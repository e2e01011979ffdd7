import os

import httpx
import pytest
import pytest_asyncio

# Must be set before contact_api.main builds its module-level settings.
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("TURNSTILE_SECRET_KEY", "0x4AAAAAAATestSecret")
os.environ.setdefault("EMAIL_PROVIDER", "mock")
os.environ.setdefault("EMAIL_FROM", "Portfolio <noreply@example.com>")
os.environ.setdefault("EMAIL_TO", "owner@example.com")

from contact_api.core.config import get_settings  # noqa: E402
from contact_api.core.request_context import CorrelationContext  # noqa: E402
from contact_api.services.anti_spam import MockAntiSpamVerifier  # noqa: E402
from contact_api.services.contact_service import ContactService  # noqa: E402
from contact_api.services.email import MockEmailChannel  # noqa: E402
from contact_api.utils.alerting import ErrorReporter, FailureAlertTracker  # noqa: E402
from contact_api.utils.rate_limit import FixedWindowRateLimiter  # noqa: E402

VALID_PAYLOAD = {
    "name": "John Doe",
    "email": "john@example.com",
    "message": "Hello, I would like to talk about a project.",
    "turnstileToken": "valid-token",
}


@pytest.fixture(autouse=True)
def _reset_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class RecordingErrorReporter(ErrorReporter):
    def __init__(self):
        self.reports = []

    def capture(self, exc, *, context, tags=None, breadcrumbs=()):
        self.reports.append(
            {"exc": exc, "context": context, "tags": dict(tags or {}), "breadcrumbs": list(breadcrumbs)}
        )


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def valid_payload():
    return dict(VALID_PAYLOAD)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def verifier():
    return MockAntiSpamVerifier()


@pytest.fixture
def email_channel():
    return MockEmailChannel()


@pytest.fixture
def reporter():
    return RecordingErrorReporter()


@pytest.fixture
def rate_limiter(clock):
    return FixedWindowRateLimiter(max_requests=5, window_seconds=3600, clock=clock, wall_clock=lambda: 1_700_000_000.0)


@pytest.fixture
def alert_tracker():
    return FailureAlertTracker(window_seconds=3600, thresholds={"DELIVERY_FAILED": 2, "RATE_LIMITED": 3})


@pytest.fixture
def contact_service(verifier, rate_limiter, email_channel, reporter, alert_tracker):
    return ContactService(
        verifier,
        rate_limiter,
        email_channel,
        reporter,
        recipient="owner@example.com",
        sender="Portfolio <noreply@example.com>",
        request_timeout_seconds=5.0,
        alert_tracker=alert_tracker,
    )


@pytest.fixture
def correlation():
    return CorrelationContext(request_id="3f1c2e4a-0000-4000-8000-000000000001", source_address="203.0.113.7")


@pytest_asyncio.fixture
async def client(contact_service):
    """In-process client with the pipeline collaborators swapped for mocks."""
    from contact_api.core.dependencies import get_contact_service
    from contact_api.main import app

    app.dependency_overrides[get_contact_service] = lambda: contact_service
    transport = httpx.ASGITransport(app=app)
    try:
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as ac:
            yield ac
    finally:
        app.dependency_overrides.pop(get_contact_service, None)
