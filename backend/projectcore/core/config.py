from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    ENV: str = Field(default="dev")  # dev|prod|test
    LOG_LEVEL: str = Field(default="INFO")

    # Security
    JWT_SECRET: str = Field(default="change-me")
    JWT_ALG: str = Field(default="HS256")
    JWT_EXPIRES_MIN: int = Field(default=60 * 12)

    # DB
    DATABASE_URL: str = Field(default="postgresql+psycopg://app:app@db:5432/app")

    # CORS
    CORS_ORIGINS: str = Field(default="http://localhost:3000,http://localhost")

    # Permissions: what to do when no grants could be loaded for the caller
    PERMISSION_DEFAULT_POLICY: str = Field(default="allow")  # allow|deny

    # Files
    EXPORT_DIR: str = Field(default="/app/data/exports")

    # Seed (dev)
    SEED_DEMO: bool = Field(default=True)
    DEMO_COMPANY_ID: str = Field(default="00000000-0000-0000-0000-00000000c0de")
    DEMO_PROJECT_ID: str = Field(default="00000000-0000-0000-0000-0000000000a1")


settings = Settings()
