"""
Configuration management for Challenge Sync.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    # Application
    app_name: str = Field(default="Challenge Sync")
    debug: bool = Field(default=False)
    environment: str = Field(default="development")

    # API
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8000)

    # Database
    database_url: str = Field(default="sqlite:///./challenge_sync.db")

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json", description="'json' or 'console'")

    # Challenge platform
    platform_name: str = Field(default="Topcoder X")
    platform_url: str = Field(default="https://www.topcoder-dev.com")
    platform_api_url: str = Field(default="https://api.topcoder-dev.com/v5")
    platform_m2m_token: Optional[str] = Field(default=None)
    platform_request_timeout: float = Field(default=30.0)
    new_challenge_status: str = Field(default="Draft")
    type_id_task: str = Field(default="ecd58c69-238f-43a4-a4bb-d172719b9f31")
    default_timeline_template_id: str = Field(
        default="53a307ce-b4b3-4d6f-b9a1-3741a58f77e6"
    )
    default_track_id: str = Field(default="9b6fc876-f4d9-4ccb-9dfd-419247628825")
    role_id_copilot: str = Field(default="cfe12b3f-2a24-4639-9d8b-ec86726f76bd")
    role_id_iterative_reviewer: str = Field(
        default="f6df7212-b9d6-4193-bfb1-b383586fce63"
    )
    role_id_submitter: str = Field(default="732339e7-8e30-49d7-9198-cccf9451e221")
    copilot_payment_amount: int = Field(default=40)

    # Git hosts
    github_base_url: str = Field(default="https://github.com")
    github_api_url: str = Field(default="https://api.github.com")
    gitlab_base_url: str = Field(default="https://gitlab.com")
    git_request_timeout: float = Field(default=30.0)

    # Issue labels
    issue_label_prefix: str = Field(default="tcx_")
    paid_issue_label: str = Field(default="tcx_Paid")
    fix_accepted_issue_label: str = Field(default="tcx_FixAccepted")
    ready_for_review_issue_label: str = Field(default="tcx_ReadyForReview")
    assigned_issue_label: str = Field(default="tcx_Assigned")
    open_for_pickup_issue_label: str = Field(default="tcx_OpenForPickup")
    not_ready_issue_label: str = Field(default="tcx_NotReady")
    canceled_issue_label: str = Field(default="tcx_Canceled")

    # Retries
    retry_count: int = Field(default=2, description="Maximum redeliveries per event")
    retry_interval_seconds: int = Field(default=120)

    # Creation lock
    creation_lock_ttl_seconds: int = Field(default=600)

    # Worker
    worker_poll_interval: float = Field(default=5.0)
    worker_claim_limit: int = Field(default=10)
    worker_claim_timeout_seconds: int = Field(
        default=300, description="Claimed events not completed within this window are redelivered"
    )


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get application settings."""
    return settings
