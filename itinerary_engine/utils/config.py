import logging
from pydantic_settings import BaseSettings
from typing import Optional

class Settings(BaseSettings):
    # Engine
    ENGINE_VERSION: str = "1.0.0"
    PERFORMANCE_TARGET_MS: int = 3000
    ENABLE_PARALLEL_PROCESSING: bool = True
    CACHE_ENABLED: bool = True
    MAX_CONTENT_ITEMS: int = 10000
    FALLBACK_STRATEGIES: bool = True
    DEBUG_MODE: bool = False

    # Degradation
    FALLBACK_CONTENT_LIMIT: int = 1000
    PARALLEL_DAY_PLANNING_MAX_DAYS: int = 14
    MATCH_SCORE_THRESHOLD: float = 0.5

    # Caching
    CACHE_TTL_SECONDS: int = 3600
    CACHE_MAX_SIZE: int = 1000
    PRICING_CACHE_TTL_MINUTES: int = 30

    # Pricing / currency
    BASE_CURRENCY: str = "USD"
    CONTINGENCY_PERCENTAGE: float = 15.0
    EXCHANGE_RATE_REFRESH_MINUTES: int = 60
    EXCHANGE_RATE_API_URL: Optional[str] = None
    PROVIDER_TIMEOUT_SECONDS: float = 0.5

    # Sequencing
    CLUSTERING_RADIUS_KM: float = 100.0
    MAX_TRAVEL_TIME_PER_DAY: int = 480  # minutes
    GA_MUTATION_RATE: float = 0.1
    GA_SEED: Optional[int] = None

    # Trip Planning Limits
    MAX_TRIP_DURATION_DAYS: int = 30
    MAX_GROUP_SIZE: int = 20

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    model_config = {"env_file": ".env", "case_sensitive": True}

# Global settings instance
settings = Settings()

def get_settings() -> Settings:
    """Get the global settings instance"""
    return settings

def validate_settings(config: Optional[Settings] = None) -> bool:
    """Validate that engine limits are internally consistent"""
    config = config or settings
    problems = []

    if config.PERFORMANCE_TARGET_MS <= 0:
        problems.append("PERFORMANCE_TARGET_MS must be positive")
    if config.FALLBACK_CONTENT_LIMIT > config.MAX_CONTENT_ITEMS:
        problems.append("FALLBACK_CONTENT_LIMIT cannot exceed MAX_CONTENT_ITEMS")
    if not 0 <= config.MATCH_SCORE_THRESHOLD <= 1:
        problems.append("MATCH_SCORE_THRESHOLD must be between 0 and 1")
    if not 0 <= config.GA_MUTATION_RATE <= 1:
        problems.append("GA_MUTATION_RATE must be between 0 and 1")
    if len(config.BASE_CURRENCY) != 3:
        problems.append("BASE_CURRENCY must be a 3-letter code")

    if problems:
        logging.getLogger(__name__).error("Invalid settings: %s", "; ".join(problems))
        return False
    return True
