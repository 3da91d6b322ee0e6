from __future__ import annotations

from typing import Callable, Dict, List, Optional

import httpx
import pytest

from membership.app.catalog import PlanCatalog, build_plan_catalog
from membership.app.config import MembershipConfig, load_membership_config


CONFIGURED_ENV: Dict[str, str] = {
    "STRIPE_PUBLISHABLE_KEY": "pk_test_51Hq2yLive",
    "STRIPE_API_BASE": "https://processor.test/v1",
    "BILLING_BACKEND_URL": "https://backend.test",
    "WHOP_API_KEY": "whop_live_key",
    "WHOP_API_BASE": "https://marketplace.test/v1",
    "WHOP_COMPANY_ID": "comp_123",
    "STRIPE_PRICE_STARTER": "price_starter_monthly",
    "STRIPE_PRICE_PRO": "price_pro_monthly",
    "STRIPE_PRICE_ELITE": "price_elite_monthly",
    "WHOP_PRODUCT_STARTER": "prod_starter",
    "WHOP_PRODUCT_PRO": "prod_pro",
    "WHOP_PRODUCT_ELITE": "prod_elite",
    "APP_BASE_URL": "https://app.test",
}


@pytest.fixture
def make_config() -> Callable[..., MembershipConfig]:
    def factory(drop: tuple = (), **overrides: str) -> MembershipConfig:
        env = {key: value for key, value in CONFIGURED_ENV.items() if key not in drop}
        env.update(overrides)
        return load_membership_config(env)

    return factory


@pytest.fixture
def config(make_config) -> MembershipConfig:
    return make_config()


@pytest.fixture
def catalog(config: MembershipConfig) -> PlanCatalog:
    return build_plan_catalog(config)


class RecordingTransport:
    """Serves canned responses and remembers every request it saw."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]) -> None:
        self._handler = handler
        self.requests: List[httpx.Request] = []

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._handler(request)

    def factory(self, **kwargs) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self._handle), **kwargs)


@pytest.fixture
def recording_transport() -> Callable[..., RecordingTransport]:
    def build(handler: Optional[Callable[[httpx.Request], httpx.Response]] = None) -> RecordingTransport:
        return RecordingTransport(handler or (lambda request: httpx.Response(200, json={})))

    return build

