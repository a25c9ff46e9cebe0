"""Config file."""
from urllib.parse import quote_plus

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    # PROJECT
    project_name: str = Field("chain-sync-engine", alias="PROJECT_NAME")

    # DATABASE
    postgres_user: str = Field(..., alias="POSTGRES_USER")
    postgres_password: SecretStr = Field(..., alias="POSTGRES_PASSWORD")
    postgres_server: str = Field(..., alias="POSTGRES_SERVER")
    postgres_port: int = Field(5432, alias="POSTGRES_PORT")
    postgres_db: str = Field(..., alias="POSTGRES_DB")
    database_url: str | None = Field(None, alias="DATABASE_URL")

    # CHAIN RPC
    rpc_http_url: str = Field(..., alias="RPC_HTTP_URL")
    rpc_wss_url: str | None = Field(None, alias="RPC_WSS_URL")
    rpc_request_timeout: int = Field(30, alias="RPC_REQUEST_TIMEOUT")
    rpc_retry_seconds: float = Field(10.0, alias="RPC_RETRY_SECONDS")

    # Optional ABI (list or artifact with "abi") used to name event parameters
    event_abi_path: str | None = Field(None, alias="EVENT_ABI_PATH")

    # CONTRACT EVENTS
    historical_batch_size: int = Field(2000, alias="HISTORICAL_BATCH_SIZE", gt=0)
    historical_retry_delay: float = Field(15.0, alias="HISTORICAL_RETRY_DELAY", ge=0)
    heartbeat_interval: float = Field(30.0, alias="HEARTBEAT_INTERVAL", gt=0)

    # ADDRESS TRANSACTIONS
    transaction_batch_size: int = Field(15, alias="TRANSACTION_BATCH_SIZE", gt=0)
    transaction_batch_delay: float = Field(0.5, alias="TRANSACTION_BATCH_DELAY", ge=0)

    # ADMISSION THROTTLE
    throttle_capacity: int = Field(3, alias="THROTTLE_CAPACITY", gt=0)
    throttle_timeout: float | None = Field(None, alias="THROTTLE_TIMEOUT")

    @model_validator(mode="after")
    def assemble_db_url(self) -> "Settings":
        if not self.database_url:
            user = quote_plus(self.postgres_user)
            password = quote_plus(self.postgres_password.get_secret_value())
            host = self.postgres_server
            port = self.postgres_port
            db = self.postgres_db

            self.database_url = f"postgresql+asyncpg://{user}:{password}@{host}:{port}/{db}"

        return self

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        populate_by_name=True,
        extra="ignore",
    )


def get_settings() -> Settings:
    return Settings()
