"""Site strategies — one per supported novel site."""

from .base_strategy import SiteStrategy
from .strategy_factory import StrategyFactory

__all__ = ["SiteStrategy", "StrategyFactory"]
