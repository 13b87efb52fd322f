# fleetledger/config.py
import logging

from pydantic_settings import BaseSettings
from pydantic import computed_field


class Settings(BaseSettings):
    # Full SQLAlchemy URL; wins over the MySQL parts below when set
    database_url: str | None = None

    mysql_user: str | None = None
    mysql_password: str | None = None
    mysql_host: str | None = None
    mysql_db: str | None = None

    # App secrets
    secret_key: str | None = None  # Primary secret
    session_secret: str | None = None  # Optional legacy/alt secret

    bcrypt_rounds: int = 12
    log_level: str = "INFO"

    @computed_field
    @property
    def sqlalchemy_url(self) -> str:
        if self.database_url:
            return self.database_url
        if self.mysql_user and self.mysql_host and self.mysql_db:
            # Use mysqlclient (MySQLdb) driver
            return (
                f"mysql+mysqldb://{self.mysql_user}:{self.mysql_password or ''}"
                f"@{self.mysql_host}/{self.mysql_db}?charset=utf8mb4"
            )
        return "sqlite:///./fleetledger.db"

    @property
    def session_key(self) -> str:
        """
        Unified session secret.
        - If SECRET_KEY is set, use it.
        - Otherwise fall back to SESSION_SECRET.
        - If neither is set, fall back to a dev default.
        """
        return (
            self.secret_key
            or self.session_secret
            or "dev-secret-change-me"
        )

    @property
    def log_level_value(self) -> int:
        level = logging.getLevelName(self.log_level.upper())
        return level if isinstance(level, int) else logging.INFO

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
