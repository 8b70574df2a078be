"""
Wires settings into the long-lived service objects the API uses.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .budget import FREE_TIER, QUOTA, BudgetConfig, BudgetLedger
from .budget_store import BudgetStore, SqliteBudgetStore
from .geocoding import GoogleGeocoder
from .google_directions import GoogleDirectionsProvider
from .here_transit import HereTransitProvider
from .hubs import HubRegistry
from .providers import RoutingProvider
from .rate_limiter import RateLimiter, RetryPolicy
from .resolver import MeetingPointResolver
from .scoring import ScoringWeights
from .settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)


@dataclass
class Services:
    resolver: MeetingPointResolver
    ledger: BudgetLedger
    limiter: RateLimiter
    geocoder: Optional[GoogleGeocoder] = None
    providers: List[RoutingProvider] = field(default_factory=list)

    def cleanup(self):
        self.resolver.cleanup()
        if self.geocoder:
            self.geocoder.cleanup()


def budget_configs(cfg: Settings) -> Dict[str, BudgetConfig]:
    return {
        GoogleDirectionsProvider.provider_id: BudgetConfig(
            provider_id=GoogleDirectionsProvider.provider_id,
            kind=QUOTA,
            monthly_cap=cfg.GOOGLE_MONTHLY_REQUEST_CAP,
        ),
        HereTransitProvider.provider_id: BudgetConfig(
            provider_id=HereTransitProvider.provider_id,
            kind=FREE_TIER,
            monthly_cap=cfg.HERE_MONTHLY_BUDGET,
            cost_per_request=cfg.HERE_COST_PER_REQUEST,
            free_tier_threshold=cfg.HERE_FREE_MONTHLY_REQUESTS,
        ),
    }


def build_providers(cfg: Settings) -> List[RoutingProvider]:
    """Providers with a configured key, in PROVIDER_ORDER."""
    available = {}
    if cfg.GOOGLE_MAPS_API_KEY:
        available["google"] = GoogleDirectionsProvider(
            cfg.GOOGLE_MAPS_API_KEY,
            timeout=cfg.REQUEST_TIMEOUT_SECONDS,
            concurrent_parties=cfg.GOOGLE_CONCURRENT_PARTIES,
        )
    if cfg.HERE_API_KEY:
        available["here"] = HereTransitProvider(
            cfg.HERE_API_KEY,
            timeout=cfg.REQUEST_TIMEOUT_SECONDS,
            concurrent_parties=cfg.HERE_CONCURRENT_PARTIES,
        )

    providers = []
    for provider_id in cfg.PROVIDER_ORDER:
        if provider_id in available:
            providers.append(available.pop(provider_id))
        else:
            logger.warning("Provider %r listed in PROVIDER_ORDER is unknown or has no API key", provider_id)
    for unused in available.values():
        logger.info("Provider %s has a key but is not listed in PROVIDER_ORDER; not used", unused.provider_id)
        unused.cleanup()
    return providers


def build_services(cfg: Optional[Settings] = None, store: Optional[BudgetStore] = None) -> Services:
    cfg = cfg or default_settings
    providers = build_providers(cfg)
    logger.info("Routing providers: %s", [p.provider_id for p in providers] or "none (geographic midpoint only)")

    ledger = BudgetLedger(budget_configs(cfg).values(), store=store or SqliteBudgetStore(cfg.BUDGET_DB_PATH))
    limiter = RateLimiter(
        delays={
            "google": cfg.GOOGLE_REQUEST_DELAY_MS / 1000.0,
            "here": cfg.HERE_REQUEST_DELAY_MS / 1000.0,
        },
        retry_policy=RetryPolicy(max_retries=1, backoff_seconds=cfg.THROTTLE_BACKOFF_SECONDS),
    )
    if cfg.HUBS_FILE:
        hub_registry = HubRegistry.from_json_file(cfg.HUBS_FILE, max_candidates=cfg.MAX_HUB_CANDIDATES)
    else:
        hub_registry = HubRegistry(max_candidates=cfg.MAX_HUB_CANDIDATES)

    resolver = MeetingPointResolver(
        providers,
        ledger,
        limiter,
        hub_registry=hub_registry,
        weights=ScoringWeights(fairness_weight=cfg.FAIRNESS_WEIGHT, transfer_weight=cfg.TRANSFER_WEIGHT_SECONDS),
        ring_radius_m=cfg.RING_RADIUS_M,
        ring_count=cfg.RING_CANDIDATE_COUNT,
    )

    geocoder = None
    if cfg.GOOGLE_MAPS_API_KEY:
        try:
            geocoder = GoogleGeocoder(cfg.GOOGLE_MAPS_API_KEY)
        except ValueError as e:
            logger.error("Error initializing Google geocoder: %s", e)

    return Services(resolver=resolver, ledger=ledger, limiter=limiter, geocoder=geocoder, providers=providers)
