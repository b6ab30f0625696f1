from functools import lru_cache

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


class Settings(BaseSettings):
    # Quote asset spent by every order (budget/amountPerInterval denomination)
    QUOTE_ASSET: str = Field("0x0000000000000000000000000000000000000000")
    QUOTE_DECIMALS: int = Field(6)
    # Circuit breaker and slippage bounds
    MAX_PRICE_SWING_PCT: int = Field(10)
    SLIPPAGE_NUMERATOR: int = Field(9900)
    SLIPPAGE_DENOMINATOR: int = Field(10000)
    # Swap instruction defaults
    SWAP_FEE_TIER: int = Field(500)
    SWAP_DEADLINE_BUFFER_SECONDS: int = Field(0)
    # Typed-signature domain
    DOMAIN_NAME: str = Field("DCAOrderEngine")
    DOMAIN_VERSION: str = Field("1")
    CHAIN_ID: int = Field(1)
    VERIFYING_CONTRACT: str = Field("0x0000000000000000000000000000000000000000")
    # Notifications and persistence
    EVENT_LOG_FILE: str = Field("")
    DATABASE_URL: str = Field("sqlite+aiosqlite:///./dca_orders.db")

    model_config = SettingsConfigDict(
        env_prefix="DCA_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
