import os
import sys
import tempfile
import threading
from pathlib import Path

import pytest

# Ensure the project root is on sys.path for direct pytest runs
PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Settings are read at import time; keep tests off real keys and the real budget db
_TMP = tempfile.mkdtemp(prefix="transit-midpoint-tests-")
os.environ["GOOGLE_MAPS_API_KEY"] = ""
os.environ["HERE_API_KEY"] = ""
os.environ["BUDGET_DB_PATH"] = os.path.join(_TMP, "budget.sqlite")
os.environ["LOG_FILE"] = ""

from transit_midpoint.budget import FREE_TIER, QUOTA, BudgetConfig, BudgetLedger  # noqa: E402
from transit_midpoint.budget_store import InMemoryBudgetStore  # noqa: E402
from transit_midpoint.models import Coordinate, RouteMetrics  # noqa: E402
from transit_midpoint.providers import RoutingProvider  # noqa: E402

TIMES_SQUARE = Coordinate(40.7580, -73.9855)
UNION_SQUARE = Coordinate(40.7359, -73.9906)


class FakeProvider(RoutingProvider):
    """Routing provider whose answers come from a callable instead of HTTP.

    responder(origin, destination, mode) returns RouteMetrics or raises a
    ProviderError.
    """

    base_url = "https://example.invalid/routes"

    def __init__(self, provider_id="google", responder=None, concurrent_parties=True, supported_modes=None):
        self.provider_id = provider_id
        self.display_name = provider_id
        if supported_modes is not None:
            self.supported_modes = frozenset(supported_modes)
        super().__init__("test-key", concurrent_parties=concurrent_parties)
        self.responder = responder or (lambda origin, destination, mode: RouteMetrics(600, 1000))
        self.calls = []
        self._calls_lock = threading.Lock()

    def build_params(self, request):
        return {}

    def parse_payload(self, payload):
        raise NotImplementedError

    def get_route(self, origin, destination, mode=None, departure_time=None):
        with self._calls_lock:
            self.calls.append((origin, destination, mode))
        return self.responder(origin, destination, mode)


def make_ledger(google_cap=2000, here_budget=80.0, here_free=250_000, clock=None, store=None):
    return BudgetLedger(
        [
            BudgetConfig("google", kind=QUOTA, monthly_cap=google_cap),
            BudgetConfig("here", kind=FREE_TIER, monthly_cap=here_budget,
                         cost_per_request=0.001, free_tier_threshold=here_free),
        ],
        store=store or InMemoryBudgetStore(),
        clock=clock,
    )


@pytest.fixture
def ledger():
    return make_ledger()
