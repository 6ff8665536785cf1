"""Terminator configuration."""

from pydantic import BaseModel, Field

DEFAULT_METADATA_URL = "http://169.254.169.254"


class TerminatorConfig(BaseModel):
    """Configuration for the terminator daemon."""

    jenkins_master_url: str
    jenkins_master_api_user: str
    jenkins_master_api_token: str
    metadata_url: str = DEFAULT_METADATA_URL

    node_termination_grace_period: int = Field(ge=0, default=300)   # Seconds before start_time to drain
    poll_interval_seconds: float = Field(gt=0, default=2.0)
    drain_interval_seconds: float = Field(gt=0, default=1.0)
    request_timeout_seconds: float = Field(gt=0, default=10.0)
    metadata_tries: int = Field(ge=1, default=3)
    metadata_retry_delay_seconds: float = Field(ge=0, default=1.0)
    shutdown_drain_timeout_seconds: float = Field(ge=0, default=5.0)
    log_level: str = "INFO"
