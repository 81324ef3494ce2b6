from urllib.parse import quote_plus
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class DatabaseSettings(BaseSettings):
    # -------------------------
    # PostgreSQL (Action Store)
    # -------------------------
    PGSQL_DB_HOST: str = Field(default="localhost")
    PGSQL_DB_PORT: int = Field(default=5432)
    PGSQL_DB_NAME: str = Field(default="operator_nba")
    PGSQL_DB_USER: str = Field(default="postgres")
    PGSQL_DB_PASSWORD: str = Field(default="")

    # Full SQLAlchemy URL; wins over the PGSQL_* parts when set
    # (e.g. "sqlite:///./nba.db" for local runs)
    DATABASE_URL: Optional[str] = Field(default=None)

    # -------------------------
    # Pool
    # -------------------------
    DB_POOL_SIZE: int = Field(default=20)
    DB_MAX_OVERFLOW: int = Field(default=10)

    class Config:
        # Pydantic automatically handles the priority:
        # 1. OS Environment Variables (Highest Priority - Docker overrides this)
        # 2. .env file values
        # 3. Default values (Lowest Priority)

        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore" # Ignores other extra fields

    @property
    def pg_dsn(self) -> str:
        """
        Constructs a safe PostgreSQL connection string (DSN).
        Handles special characters in the password and includes the port.
        """
        # Safely encode the password to handle characters like '@', '/', ':'
        encoded_password = quote_plus(self.PGSQL_DB_PASSWORD)

        return (
            f"postgresql://{self.PGSQL_DB_USER}:{encoded_password}@"
            f"{self.PGSQL_DB_HOST}:{self.PGSQL_DB_PORT}/"
            f"{self.PGSQL_DB_NAME}"
        )

    @property
    def database_url(self) -> str:
        return self.DATABASE_URL or self.pg_dsn
