"""
Configuration settings for Resiliency App service.
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Service configuration loaded from environment variables."""

    # Service settings
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 3000
    debug: bool = False

    # Dapr sidecar
    dapr_http_endpoint: str = "http://localhost:3500"
    dapr_grpc_endpoint: str = "localhost:50001"
    dapr_timeout_seconds: float = 30.0
    dapr_wait_for_sidecar: bool = True
    dapr_startup_retries: int = 10
    dapr_startup_retry_interval_seconds: float = 5.0

    # Service invocation targets
    app_id: str = "resiliencyapp"
    grpc_app_id: str = "resiliencyappgrpc"

    # Pub/sub subscription
    pubsub_name: str = "dapr-resiliency-pubsub"
    pubsub_topic: str = "resiliency-topic-http"

    model_config = {"env_prefix": "", "case_sensitive": False}
