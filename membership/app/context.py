"""Application wiring for the membership services."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from .access import AccessController, InMemoryAccessCache
from .catalog import PlanCatalog, build_plan_catalog
from .checkout import CheckoutRouter
from .community import CommunityFulfillment
from .config import MembershipConfig
from .enums import Provider
from .providers import CardProcessorClient, MarketplaceClient, ProviderClient
from .providers.http import ClientFactory
from .subscriptions import EventInbox, SessionSweeper, SubscriptionStateMachine

logger = logging.getLogger("membership")


@dataclass
class MembershipContext:
    """Every long-lived membership component, built once per process."""

    config: MembershipConfig
    catalog: PlanCatalog
    marketplace: MarketplaceClient
    processor: CardProcessorClient
    state_machine: SubscriptionStateMachine
    checkout: CheckoutRouter
    access: AccessController
    community: CommunityFulfillment
    inbox: EventInbox
    sweeper: SessionSweeper

    def client_for(self, provider: Provider) -> ProviderClient:
        clients: Dict[Provider, ProviderClient] = {
            Provider.MARKETPLACE: self.marketplace,
            Provider.CARD_PROCESSOR: self.processor,
        }
        return clients[provider]


def build_context(
    config: MembershipConfig,
    *,
    client_factory: Optional[ClientFactory] = None,
) -> MembershipContext:
    catalog = build_plan_catalog(config)
    cache = InMemoryAccessCache()
    community = CommunityFulfillment(catalog)
    state_machine = SubscriptionStateMachine(catalog, cache, community)

    marketplace = MarketplaceClient(
        config.marketplace,
        company_id=config.marketplace_company_id,
        catalog=catalog,
        timeout=config.request_timeout_seconds,
        client_factory=client_factory,
    )
    processor = CardProcessorClient(
        config.processor,
        backend_url=config.processor_backend_url,
        catalog=catalog,
        timeout=config.request_timeout_seconds,
        client_factory=client_factory,
    )

    context = MembershipContext(
        config=config,
        catalog=catalog,
        marketplace=marketplace,
        processor=processor,
        state_machine=state_machine,
        checkout=CheckoutRouter(
            catalog=catalog,
            marketplace=marketplace,
            processor=processor,
            state_machine=state_machine,
            config=config,
        ),
        access=AccessController(
            catalog,
            state_machine,
            cache,
            community,
            past_due_grants_access=config.past_due_grants_access,
        ),
        community=community,
        inbox=EventInbox(state_machine),
        sweeper=SessionSweeper(
            state_machine,
            interval_seconds=config.session_sweep_interval_seconds,
            retention_seconds=config.session_retention_seconds,
        ),
    )
    logger.info(
        "Membership context ready (marketplace=%s, processor=%s)",
        "configured" if marketplace.configured else "unconfigured",
        "configured" if processor.configured else "unconfigured",
    )
    return context


__all__ = ["MembershipContext", "build_context"]
