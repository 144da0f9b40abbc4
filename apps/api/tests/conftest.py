import json
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from config import CoreConfig
from database import Base, get_db
from main import app
from routers import rate_limit
from routers.deps import get_core_config, get_provider_gateway
from services.provider_gateway import EachlabsGateway


PROVIDER_URL = "https://provider.test/v1/prediction"


@pytest.fixture(autouse=True)
def reset_local_rate_limit_counters():
    """Keep in-memory rate-limit state isolated between tests."""
    previous = getattr(app.state, "disable_rate_limits", False)
    app.state.disable_rate_limits = True
    rate_limit._local_counters.clear()
    yield
    rate_limit._local_counters.clear()
    app.state.disable_rate_limits = previous


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'logoloco.db'}")
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield maker
    await engine.dispose()


@pytest_asyncio.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def core_config() -> CoreConfig:
    return CoreConfig(
        signup_bonus_credits=2,
        max_output_count=4,
        history_retention_days=90,
        refund_failed_polls=True,
        provider_api_key="test-provider-key",
        provider_api_url=PROVIDER_URL,
        provider_timeout_seconds=5.0,
        webhook_secret="whsec_test",
        admin_emails=frozenset({"admin@logoloco.test"}),
    )


class FakeProvider:
    """Scripted stand-in for the provider HTTP API behind httpx.MockTransport."""

    def __init__(self):
        self.submit_response: Any = {"id": "pred-1", "status": "queued"}
        self.submit_status_code = 200
        self.status_responses: Dict[str, Any] = {}
        self.unreachable = False
        self.requests: List[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.unreachable:
            raise httpx.ConnectError("connection refused", request=request)
        if request.method == "POST":
            return self._respond(self.submit_status_code, self.submit_response)
        prediction_id = request.url.path.rstrip("/").rsplit("/", 1)[-1]
        payload = self.status_responses.get(prediction_id, {"id": prediction_id, "status": "running"})
        return self._respond(200, payload)

    @staticmethod
    def _respond(status_code: int, payload: Any) -> httpx.Response:
        if isinstance(payload, (bytes, str)):
            return httpx.Response(status_code, content=payload)
        return httpx.Response(status_code, json=payload)

    def submitted_bodies(self) -> List[Dict[str, Any]]:
        return [json.loads(req.content) for req in self.requests if req.method == "POST"]


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def gateway_factory(fake_provider) -> Callable[[CoreConfig], EachlabsGateway]:
    def _build(config: CoreConfig, provider: Optional[FakeProvider] = None) -> EachlabsGateway:
        source = provider or fake_provider
        return EachlabsGateway(config, transport=httpx.MockTransport(source.handler))

    return _build


@pytest_asyncio.fixture
async def api_client(session_maker, core_config, gateway_factory):
    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_core_config] = lambda: core_config
    app.dependency_overrides[get_provider_gateway] = lambda: gateway_factory(core_config)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    for dependency in (get_db, get_core_config, get_provider_gateway):
        app.dependency_overrides.pop(dependency, None)
