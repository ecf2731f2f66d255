# paygate/core/config.py
from functools import lru_cache
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from pydantic import AnyHttpUrl # AnyHttpUrl stays in pydantic core
from pydantic_settings import BaseSettings

# Load .env file if it exists
load_dotenv()

DEFAULT_ROUTES: Dict[str, Any] = {
    "/api/protected/weather": {
        "price": "10",  # smallest ledger unit
        "network": "testnet",
        "description": "Access to weather data API",
    },
}


class Settings(BaseSettings):
    PROJECT_NAME: str = "x402 Payment Gateway"

    # x402 seller settings
    X402_ENABLED: bool = True
    X402_PAY_TO_ADDRESS: Optional[str] = None
    X402_FACILITATOR_URL: AnyHttpUrl = "http://localhost:3000/api/facilitator"
    X402_FACILITATOR_TIMEOUT_SECONDS: float = 10.0
    X402_FACILITATOR_MAX_RETRIES: int = 1
    X402_FACILITATOR_MAX_IN_FLIGHT: int = 16
    X402_MAX_TIMEOUT_SECONDS: int = 600
    X402_ROUTES: Dict[str, Any] = DEFAULT_ROUTES  # JSON object in the environment
    X402_AUDIT_LOG_PATH: Optional[str] = None

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields from .env

@lru_cache() # Cache the settings object for performance
def get_settings() -> Settings:
    return Settings()

settings = get_settings()
