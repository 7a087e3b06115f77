"""Trade data providers."""
from .base import TradeProvider
from .comtrade import ComtradeProvider
from .wits import WitsProvider

__all__ = ["TradeProvider", "ComtradeProvider", "WitsProvider"]
