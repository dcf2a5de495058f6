# relay_provisioning/conf.py
import os
from dataclasses import dataclass
from typing import List, Optional

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

from .models import DeliveryTarget

REQUIRED = (
    "AWS_REGION",
    "AWS_ACCOUNT_ID",
    "BASE_URL",
    "CLIENT_ID",
    "CLIENT_SECRET",
    "ACCESS_TOKEN_ENDPOINT",
    "NAMED_CRED_NAME",
    "NAMED_CRED_LABEL",
    "EVENT_RELAY_NAME",
    "EVENT_RELAY_LABEL",
    "EVENT_CHANNEL_NAME",
    "PLATFORM_EVENT_NAME",
    "LOG_GROUP_NAME",
    "ENVIRONMENT",
)


def _getenv(name: str, default: Optional[str] = None) -> Optional[str]:
    if getattr(settings, name, None) not in (None, ""):
        return getattr(settings, name)
    return os.getenv(name, default)


def _delivery_targets() -> List[DeliveryTarget]:
    """TARGET_ID_1/TARGET_ARN_1, TARGET_ID_2/TARGET_ARN_2, ... until the first gap."""
    targets = []
    n = 1
    while True:
        target_id = _getenv(f"TARGET_ID_{n}")
        target_arn = _getenv(f"TARGET_ARN_{n}")
        if not target_id or not target_arn:
            break
        targets.append(DeliveryTarget(id=target_id, arn=target_arn))
        n += 1
    return targets


@dataclass(frozen=True)
class RelaySettings:
    aws_region: str
    aws_account_id: str
    base_url: str
    api_version: str
    client_id: str
    client_secret: str
    redirect_uri: str
    auth_token_endpoint: Optional[str]
    access_token_endpoint: str
    named_cred_name: str
    named_cred_label: str
    event_relay_name: str
    event_relay_label: str
    event_channel_name: str
    platform_event_name: str
    log_group_name: str
    environment: str
    targets: tuple = ()
    feedback_poll_interval: float = 180.0
    feedback_max_iterations: int = 20
    source_poll_delay: float = 5.0
    source_max_retries: int = 10
    validation_settle_delay: float = 30.0

    @property
    def rule_name(self) -> str:
        return f"{self.environment}-EventRelay-Rule"

    @property
    def named_credential_endpoint(self) -> str:
        return f"arn:aws:{self.aws_region}:{self.aws_account_id}"


def load_relay_settings() -> RelaySettings:
    missing = [name for name in REQUIRED if not _getenv(name)]
    if missing:
        raise ImproperlyConfigured(f"Missing settings: {', '.join(missing)}")

    return RelaySettings(
        aws_region=_getenv("AWS_REGION"),
        aws_account_id=_getenv("AWS_ACCOUNT_ID"),
        base_url=_getenv("BASE_URL").rstrip("/"),
        api_version=_getenv("API_VERSION", "v59.0"),
        client_id=_getenv("CLIENT_ID"),
        client_secret=_getenv("CLIENT_SECRET"),
        redirect_uri=_getenv("REDIRECT_URI", "http://localhost:3000/callback"),
        auth_token_endpoint=_getenv("AUTH_TOKEN_ENDPOINT"),
        access_token_endpoint=_getenv("ACCESS_TOKEN_ENDPOINT"),
        named_cred_name=_getenv("NAMED_CRED_NAME"),
        named_cred_label=_getenv("NAMED_CRED_LABEL"),
        event_relay_name=_getenv("EVENT_RELAY_NAME"),
        event_relay_label=_getenv("EVENT_RELAY_LABEL"),
        event_channel_name=_getenv("EVENT_CHANNEL_NAME"),
        platform_event_name=_getenv("PLATFORM_EVENT_NAME"),
        log_group_name=_getenv("LOG_GROUP_NAME"),
        environment=_getenv("ENVIRONMENT"),
        targets=tuple(_delivery_targets()),
        feedback_poll_interval=float(_getenv("FEEDBACK_POLL_INTERVAL", 180)),
        feedback_max_iterations=int(_getenv("FEEDBACK_MAX_ITERATIONS", 20)),
        source_poll_delay=float(_getenv("SOURCE_POLL_DELAY", 5)),
        source_max_retries=int(_getenv("SOURCE_MAX_RETRIES", 10)),
        validation_settle_delay=float(_getenv("VALIDATION_SETTLE_DELAY", 30)),
    )
