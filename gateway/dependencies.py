from functools import lru_cache

from gateway.config import get_settings
from gateway.services.cost_tracker import CostTracker
from gateway.services.dispatcher import Dispatcher, build_dispatcher


@lru_cache
def get_dispatcher() -> Dispatcher:
    return build_dispatcher(get_settings())


def get_cost_tracker() -> CostTracker:
    return CostTracker()
