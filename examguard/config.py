from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Relational backend (SQLAlchemy URL, e.g. mysql+aiomysql://user:pw@host/db)
    DATABASE_URL: Optional[str] = None
    DB_ECHO: bool = False

    # Oracle backend
    USE_ORACLE: bool = False
    ORACLE_USER: str = "exam_system"
    ORACLE_PASSWORD: str = "oracle_password"
    ORACLE_CONNECT_STRING: Optional[str] = None
    ORACLE_HOST: str = "localhost"
    ORACLE_PORT: int = 1521
    ORACLE_DB: str = "XEPDB1"
    ORACLE_POOL_MIN: int = 2
    ORACLE_POOL_MAX: int = 10
    ORACLE_POOL_INCREMENT: int = 1

    # The user whose open id matches this is promoted to admin on first upsert
    OWNER_OPEN_ID: Optional[str] = None

    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"

    @property
    def oracle_dsn(self) -> str:
        """Connect string, or host:port/service built from the parts."""
        if self.ORACLE_CONNECT_STRING:
            return self.ORACLE_CONNECT_STRING
        return f"{self.ORACLE_HOST}:{self.ORACLE_PORT}/{self.ORACLE_DB}"


settings = Settings()
