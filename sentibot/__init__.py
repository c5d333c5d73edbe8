from .config import BotConfig, load_config
from .engine import TradingEngine

__all__ = ["TradingEngine", "BotConfig", "load_config"]
