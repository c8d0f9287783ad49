"""
Application configuration settings loaded from environment variables.
Uses pydantic_settings for validation and type conversion.
"""
from pydantic_settings import BaseSettings
from typing import Optional

class Settings(BaseSettings):
    """
    Application settings class with environment variable validation.

    Attributes:
        database_url: Connection string for the draft and audit tables

        # Registration backend settings
        registration_api_base_url: Base URL of the registration backend
        availability_path: Path of the email/phone availability endpoint
        license_verification_path: Path of the license/identity verification endpoint
        finalize_path: Path of the finalize registration endpoint
        http_timeout_seconds: Timeout applied to every outbound request

        # Workflow timing settings
        availability_debounce_ms: Quiet period before an availability check
        verification_debounce_ms: Quiet period before a license verification
        autosave_debounce_ms: Quiet period before the draft is autosaved

        # Persistence settings
        draft_storage_prefix: Prefix of the storage key of persisted drafts
        draft_expiration_hours: Age after which a persisted draft is discarded
        store_audit_events: Whether audit events are also written to the database

        # Frontend settings
        frontend_url: URL of the frontend application
        log_level: Root logging level
    """
    # Database settings
    database_url: str = "sqlite:///./doctor_registration.db"

    # Registration backend settings
    registration_api_base_url: str = "http://localhost:3000/api"
    availability_path: str = "/check-availability"
    license_verification_path: str = "/license-verification"
    finalize_path: str = "/register/finalize"
    http_timeout_seconds: float = 30.0

    # Workflow timing settings
    availability_debounce_ms: int = 1000
    verification_debounce_ms: int = 2000
    autosave_debounce_ms: int = 1000

    # Persistence settings
    draft_storage_prefix: str = "doctor_registration"
    draft_expiration_hours: int = 24
    store_audit_events: bool = True

    # Frontend settings
    frontend_url: str = "http://localhost:3000"
    log_level: str = "INFO"

    # Optional API key sent to the registration backend
    registration_api_key: Optional[str] = None

    class Config:
        """Configuration for environment variables loading"""
        env_file = ".env"
        case_sensitive = False

# Create settings instance
settings = Settings()
