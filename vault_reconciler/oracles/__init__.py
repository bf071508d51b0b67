"""Price sources and the fallback resolver."""
from .coingecko import CoinGeckoOracle
from .onchain import OnChainOracle
from .pyth import PythOracle
from .resolver import PriceOracleResolver

__all__ = ["CoinGeckoOracle", "OnChainOracle", "PriceOracleResolver", "PythOracle"]
