from pydantic import Field
from pydantic_settings import BaseSettings


class Config(BaseSettings):
    """Engine configuration loaded from environment variables."""

    database_url: str
    debug: bool = False
    counters_collection: str = "id_assigner_counters"  # One record per model (and per discriminator)
    # Retries of the whole save when the store reports a duplicate key
    save_retry_count: int = Field(20, ge=1)
    save_retry_delay_ms: int = Field(20, ge=0)
    # Retries of the conditional counter update under concurrent writers
    counter_retry_count: int = Field(200, ge=1)
    counter_retry_delay_ms: int = Field(5, ge=0)

    model_config = {
        "env_file": [".env"],
        "env_prefix": "IDASSIGNER_",
        "extra": "ignore",
    }
