"""Configuration management from environment variables."""
import os
from pathlib import Path
from dotenv import load_dotenv

# Load .env file
load_dotenv()

# Project root
PROJECT_ROOT = Path(__file__).parent.parent
DATA_DIR = Path(os.getenv("DATA_DIR", str(PROJECT_ROOT / "data")))
CACHE_DB = DATA_DIR / "cache.db"

# Ensure directories exist
DATA_DIR.mkdir(parents=True, exist_ok=True)

DAY = 24 * 60 * 60


class Config:
    """Application configuration."""

    # Rebrickable
    REBRICKABLE_API_KEY: str | None = os.getenv("REBRICKABLE_API_KEY")
    REBRICKABLE_BASE_URL: str = os.getenv(
        "REBRICKABLE_BASE_URL", "https://rebrickable.com/api/v3/lego"
    )

    # BrickLink
    BRICKLINK_BASE_URL: str = os.getenv("BRICKLINK_BASE_URL", "https://www.bricklink.com")

    USER_AGENT: str = os.getenv(
        "USER_AGENT",
        "LegoInventoryBot/1.0 (+https://github.com/SgtClubby/LegoInventory)",
    )

    # Outbound HTTP
    RATE_PER_SECOND: float = float(os.getenv("RATE_PER_SECOND", "1.0"))
    BURST_SIZE: int = int(os.getenv("BURST_SIZE", "5"))
    TIMEOUT: float = float(os.getenv("TIMEOUT", "8"))
    MAX_RETRIES: int = int(os.getenv("MAX_RETRIES", "3"))
    RETRY_DELAY: float = float(os.getenv("RETRY_DELAY", "1.0"))

    # Batch runs (seconds)
    BATCH_SIZE: int = int(os.getenv("BATCH_SIZE", "5"))
    STANDARD_DELAY: float = float(os.getenv("STANDARD_DELAY", "6"))
    PRICE_STANDARD_DELAY: float = float(os.getenv("PRICE_STANDARD_DELAY", "3"))
    RATE_LIMIT_DELAY: float = float(os.getenv("RATE_LIMIT_DELAY", "120"))

    # Cache expiry (seconds)
    CACHE_EXPIRY_BRICK: int = int(os.getenv("CACHE_EXPIRY_BRICK", str(30 * DAY)))
    CACHE_EXPIRY_MINIFIG: int = int(os.getenv("CACHE_EXPIRY_MINIFIG", str(7 * DAY)))
    CACHE_EXPIRY_PRICE: int = int(os.getenv("CACHE_EXPIRY_PRICE", str(2 * DAY)))
    MEMORY_CACHE_TTL: int = int(os.getenv("MEMORY_CACHE_TTL", "300"))

    # Storage
    DB_PATH: Path = Path(os.getenv("DB_PATH", str(CACHE_DB)))

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # API Security
    API_KEY: str | None = os.getenv("API_KEY")

    @classmethod
    def validate(cls, require_rebrickable: bool = True) -> None:
        """Validate required configuration."""
        errors = []
        if require_rebrickable and not cls.REBRICKABLE_API_KEY:
            errors.append("REBRICKABLE_API_KEY is required")
        if cls.RATE_PER_SECOND <= 0:
            errors.append("RATE_PER_SECOND must be positive")
        if cls.BURST_SIZE < 1:
            errors.append("BURST_SIZE must be at least 1")
        if cls.BATCH_SIZE < 1:
            errors.append("BATCH_SIZE must be at least 1")
        if errors:
            raise ValueError(f"Configuration errors: {', '.join(errors)}")


config = Config()
