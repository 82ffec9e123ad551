# clinic/config.py
#
# This module holds the typed application settings. Values come from the
# environment (or a local .env file) and are cached for the process lifetime.

from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="allow",
        case_sensitive=False,
    )

    # Application
    app_name: str = "Asociación Humana HIS"
    environment: str = Field(default="development", alias="ENVIRONMENT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # AWS
    aws_region: str = Field(default="us-east-1", alias="AWS_REGION")
    files_bucket: str = Field(default="humana-clinic-files", alias="FILES_BUCKET")
    backups_bucket: str = Field(default="humana-clinic-backups", alias="BACKUPS_BUCKET")

    # DynamoDB tables (one per collection)
    users_table_name: str = Field(default="Users", alias="USERS_TABLE_NAME")
    patients_table_name: str = Field(default="Patients", alias="PATIENTS_TABLE_NAME")
    consultations_table_name: str = Field(default="Consultations", alias="CONSULTATIONS_TABLE_NAME")
    appointments_table_name: str = Field(default="Appointments", alias="APPOINTMENTS_TABLE_NAME")
    notifications_table_name: str = Field(default="Notifications", alias="NOTIFICATIONS_TABLE_NAME")
    audit_logs_table_name: str = Field(default="AuditLogs", alias="AUDIT_LOGS_TABLE_NAME")
    inventory_table_name: str = Field(default="Inventory", alias="INVENTORY_TABLE_NAME")
    laboratory_table_name: str = Field(default="LaboratoryCatalog", alias="LABORATORY_TABLE_NAME")
    external_medicines_table_name: str = Field(default="ExternalMedicines", alias="EXTERNAL_MEDICINES_TABLE_NAME")
    pathologies_table_name: str = Field(default="Pathologies", alias="PATHOLOGIES_TABLE_NAME")
    specialties_table_name: str = Field(default="Specialties", alias="SPECIALTIES_TABLE_NAME")
    system_settings_table_name: str = Field(default="SystemSettings", alias="SYSTEM_SETTINGS_TABLE_NAME")

    # Cognito
    cognito_region: Optional[str] = Field(default=None, alias="COGNITO_REGION")
    cognito_userpool_id: Optional[str] = Field(default=None, alias="COGNITO_USERPOOL_ID")
    cognito_app_client_id: Optional[str] = Field(default=None, alias="COGNITO_APP_CLIENT_ID")

    # Backend API token
    api_jwt_secret: Optional[str] = Field(default=None, alias="API_JWT_SECRET")
    api_jwt_secret_name: Optional[str] = Field(default=None, alias="API_JWT_SECRET_NAME")
    api_token_expiry_minutes: int = Field(default=90, alias="API_TOKEN_EXPIRY_MINUTES")

    # Session gate
    session_duration_minutes: int = Field(default=90, alias="SESSION_DURATION_MINUTES")
    recent_login_max_age_minutes: int = Field(default=5, alias="RECENT_LOGIN_MAX_AGE_MINUTES")
    session_cookie_secure: bool = Field(default=True, alias="SESSION_COOKIE_SECURE")

    # Autosave drafts (node-local)
    drafts_dir: str = Field(default="/tmp/clinic-drafts", alias="DRAFTS_DIR")

    # Gemini
    gemini_api_key: Optional[str] = Field(default=None, alias="GEMINI_API_KEY")
    gemini_model: str = Field(default="gemini-2.5-flash", alias="GEMINI_MODEL")
    gemini_timeout_seconds: float = Field(default=20.0, alias="GEMINI_TIMEOUT_SECONDS")

    # SendGrid
    sendgrid_api_key: Optional[str] = Field(default=None, alias="SENDGRID_API_KEY")
    sender_email: str = Field(default="noreply@asociacionhumana.com", alias="SENDER_EMAIL")
    reply_to_email: str = Field(default="info@asociacionhumana.com", alias="REPLY_TO_EMAIL")

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v):
        return (v or "INFO").upper()

    @field_validator("session_duration_minutes")
    @classmethod
    def validate_session_duration(cls, v):
        if v <= 0:
            raise ValueError("SESSION_DURATION_MINUTES must be positive")
        return v

    @property
    def session_duration_ms(self) -> int:
        return self.session_duration_minutes * 60 * 1000

    @property
    def email_enabled(self) -> bool:
        return bool(self.sendgrid_api_key)

    @property
    def gemini_enabled(self) -> bool:
        return bool(self.gemini_api_key)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
