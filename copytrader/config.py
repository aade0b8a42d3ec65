# copytrader/config.py: 100% ENV-DRIVEN
from pydantic import BaseModel
from typing import Optional
import os


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class Settings(BaseModel):
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./copytrader.db")
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Copy behaviour: CHANGE THESE IN DEPLOYMENT VARIABLES
    DRY_RUN: bool = _flag("DRY_RUN", "true")
    DEFAULT_BANKROLL: float = float(os.getenv("DEFAULT_BANKROLL", "10000"))
    DEFAULT_FOLLOWER: str = os.getenv("DEFAULT_FOLLOWER", "default")
    PENDING_TIMEOUT: int = int(os.getenv("PENDING_TIMEOUT", "300"))
    PENDING_SWEEP_INTERVAL: float = float(os.getenv("PENDING_SWEEP_INTERVAL", "60"))

    # Kalshi (destination exchange)
    KALSHI_API_KEY_ID: Optional[str] = os.getenv("KALSHI_API_KEY_ID")
    KALSHI_PRIVATE_KEY: Optional[str] = os.getenv("KALSHI_PRIVATE_KEY")
    KALSHI_USE_DEMO: bool = _flag("KALSHI_USE_DEMO", "true")
    KALSHI_BASE_URL: Optional[str] = os.getenv("KALSHI_BASE_URL")

    # Helius (upstream Solana activity)
    HELIUS_API_KEY: Optional[str] = os.getenv("HELIUS_API_KEY")
    HELIUS_BASE_URL: str = os.getenv("HELIUS_BASE_URL", "https://api.helius.xyz")
    HELIUS_WEBHOOK_SECRET: Optional[str] = os.getenv("HELIUS_WEBHOOK_SECRET")

    HTTP_TIMEOUT: float = float(os.getenv("HTTP_TIMEOUT", "10"))

    # Market catalog / matching
    MARKET_CACHE_TTL: float = float(os.getenv("MARKET_CACHE_TTL", "300"))
    MARKET_FETCH_LIMIT: int = int(os.getenv("MARKET_FETCH_LIMIT", "1000"))
    MARKET_FETCH_MAX_PAGES: int = int(os.getenv("MARKET_FETCH_MAX_PAGES", "5"))
    MATCH_MIN_SCORE: int = int(os.getenv("MATCH_MIN_SCORE", "3"))

    # Poll fallback
    WATCHER_ENABLED: bool = _flag("WATCHER_ENABLED", "true")
    WATCHER_INTERVAL: float = float(os.getenv("WATCHER_INTERVAL", "10"))

    # Retention
    ACTIVITY_HISTORY_LIMIT: int = int(os.getenv("ACTIVITY_HISTORY_LIMIT", "50"))
    ACTIVITY_HISTORY_TTL_DAYS: int = int(os.getenv("ACTIVITY_HISTORY_TTL_DAYS", "90"))
    MAX_NOTIFICATIONS: int = int(os.getenv("MAX_NOTIFICATIONS", "100"))
    NOTIFICATION_TTL_DAYS: int = int(os.getenv("NOTIFICATION_TTL_DAYS", "30"))

    @property
    def kalshi_base_url(self) -> str:
        if self.KALSHI_BASE_URL:
            return self.KALSHI_BASE_URL
        return "https://demo-api.kalshi.co" if self.KALSHI_USE_DEMO else "https://api.kalshi.com"


settings = Settings()
