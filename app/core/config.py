from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field(..., alias="DATABASE_URL")

    jwt_secret_key: str = Field(..., alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field("HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(15, alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    bcrypt_rounds: int = Field(12, alias="BCRYPT_ROUNDS")

    temp_code_prefix: str = Field("lumtempcode", alias="TEMP_CODE_PREFIX")
    temp_credential_expiry_days: int = Field(5, alias="TEMP_CREDENTIAL_EXPIRY_DAYS")

    registration_token_expiry_days: int = Field(7, alias="REGISTRATION_TOKEN_EXPIRY_DAYS")
    registration_token_max_uses: int = Field(1, alias="REGISTRATION_TOKEN_MAX_USES")

    email_enabled: bool = Field(False, alias="EMAIL_ENABLED")
    smtp_host: Optional[str] = Field(None, alias="SMTP_HOST")
    smtp_port: int = Field(587, alias="SMTP_PORT")
    smtp_username: Optional[str] = Field(None, alias="SMTP_USERNAME")
    smtp_password: Optional[str] = Field(None, alias="SMTP_PASSWORD")
    smtp_use_tls: bool = Field(True, alias="SMTP_USE_TLS")
    email_from: str = Field("no-reply@localhost", alias="EMAIL_FROM")
    portal_url: str = Field("http://localhost:3000", alias="PORTAL_URL")

    log_level: str = Field("INFO", alias="LOG_LEVEL")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
