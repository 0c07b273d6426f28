import functools
from typing import List, Optional

from pydantic import AnyHttpUrl, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _split_csv(value: Optional[str]) -> List[str]:
  if not value:
    return []
  return [item.strip() for item in value.split(",") if item.strip()]


def _parse_bool(value):
  if value is None:
    return None
  if isinstance(value, bool):
    return value
  normalized = str(value).strip().lower()
  if normalized in {"1", "true", "yes", "on"}:
    return True
  if normalized in {"0", "false", "no", "off"}:
    return False
  return None


class Settings(BaseSettings):
  model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)

  port: int = Field(4000, alias="PORT")
  log_level: str = Field("INFO", alias="LOG_LEVEL")
  jwt_secret: str = Field("itt_estate_dev_secret", alias="JWT_SECRET")
  jwt_expire_days: int = Field(7, alias="JWT_EXPIRE_DAYS")
  client_origin: str = Field("http://localhost:3000", alias="CLIENT_ORIGIN")

  firebase_database_url: Optional[AnyHttpUrl] = Field(None, alias="FIREBASE_DATABASE_URL")
  firebase_database_secret: Optional[str] = Field(None, alias="FIREBASE_DATABASE_SECRET")
  firebase_api_key: Optional[str] = Field(None, alias="FIREBASE_API_KEY")
  firebase_timeout_seconds: float = Field(15, alias="FIREBASE_TIMEOUT_SECONDS")

  default_admin_email: str = Field("admin@ittrealestate.cm", alias="DEFAULT_ADMIN_EMAIL")
  default_admin_password: str = Field("Admin!2024", alias="DEFAULT_ADMIN_PASSWORD")

  platform_fee_amount: int = Field(1000, alias="PLATFORM_FEE_AMOUNT")
  mock_payment_delay_seconds: float = Field(0, alias="MOCK_PAYMENT_DELAY_SECONDS")

  smtp_host: Optional[str] = Field(None, alias="SMTP_HOST")
  smtp_port: int = Field(587, alias="SMTP_PORT")
  smtp_user: Optional[str] = Field(None, alias="SMTP_USER")
  smtp_password: Optional[str] = Field(None, alias="SMTP_PASSWORD")
  smtp_secure: Optional[bool] = Field(None, alias="SMTP_SECURE")
  mail_from: Optional[str] = Field(None, alias="MAIL_FROM")
  mail_reply_to: Optional[str] = Field(None, alias="MAIL_REPLY_TO")
  app_url: str = Field("http://localhost:3000", alias="APP_URL")

  digest_enabled: Optional[bool] = Field(None, alias="DIGEST_ENABLED")
  digest_recipients: Optional[str] = Field(None, alias="DIGEST_RECIPIENTS")
  digest_cron_tz: str = Field("Africa/Douala", alias="DIGEST_CRON_TZ")

  allowed_origins: List[str] = Field(default_factory=list, validate_default=True)

  @field_validator("allowed_origins", mode="before")
  @classmethod
  def fill_origins(cls, value, info):
    if value:
      return value
    client_origin = info.data.get("client_origin") or "http://localhost:3000"
    return _split_csv(client_origin)

  @field_validator("smtp_secure", "digest_enabled", mode="before")
  @classmethod
  def normalize_bool(cls, value):
    return _parse_bool(value)

  @property
  def mailer_configured(self) -> bool:
    return bool(self.smtp_host)

  @property
  def digest_recipient_list(self) -> List[str]:
    return _split_csv(self.digest_recipients)

  @property
  def digest_active(self) -> bool:
    if self.digest_enabled is None:
      return self.mailer_configured and bool(self.digest_recipient_list)
    return self.digest_enabled


@functools.lru_cache
def get_settings() -> Settings:
  return Settings()  # type: ignore[arg-type]
