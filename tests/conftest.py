import os

import django
import pytest

TEST_ENV = {
    "DJANGO_SETTINGS_MODULE": "Event_relay.settings",
    "AWS_REGION": "EU-CENTRAL-1",
    "AWS_ACCOUNT_ID": "123456789012",
    "AWS_ACCESS_KEY_ID": "testing",
    "AWS_SECRET_ACCESS_KEY": "testing",
    "AWS_SECURITY_TOKEN": "testing",
    "AWS_SESSION_TOKEN": "testing",
    "AWS_DEFAULT_REGION": "eu-central-1",
    "BASE_URL": "https://example.my.salesforce.com",
    "API_VERSION": "v59.0",
    "CLIENT_ID": "client-id",
    "CLIENT_SECRET": "client-secret",
    "REDIRECT_URI": "http://localhost:3000/callback",
    "AUTH_TOKEN_ENDPOINT": "https://login.example.com/services/oauth2/authorize",
    "ACCESS_TOKEN_ENDPOINT": "https://login.example.com/services/oauth2/token",
    "NAMED_CRED_NAME": "AWS_EventRelay",
    "NAMED_CRED_LABEL": "AWS Event Relay",
    "EVENT_RELAY_NAME": "Asset_Relay",
    "EVENT_RELAY_LABEL": "Asset Relay",
    "EVENT_CHANNEL_NAME": "Asset_Channel__chn",
    "PLATFORM_EVENT_NAME": "Asset_Event__e",
    "TARGET_ID_1": "queue",
    "TARGET_ARN_1": "arn:aws:sqs:eu-central-1:123456789012:relay-queue",
    "TARGET_ID_2": "logs",
    "TARGET_ARN_2": "arn:aws:logs:eu-central-1:123456789012:log-group:/aws/events/relay",
    "LOG_GROUP_NAME": "/aws/events/relay",
    "ENVIRONMENT": "dev",
    "CELERY_TASK_ALWAYS_EAGER": "True",
}

for key, value in TEST_ENV.items():
    os.environ[key] = value

django.setup()


@pytest.fixture
def relay():
    """RelaySettings with zero delays and small loop bounds."""
    from dataclasses import replace
    from relay_provisioning.conf import load_relay_settings

    return replace(
        load_relay_settings(),
        feedback_poll_interval=0,
        feedback_max_iterations=5,
        source_poll_delay=0,
        source_max_retries=3,
        validation_settle_delay=0,
    )


@pytest.fixture
def sleeps():
    """Records requested sleeps instead of sleeping."""
    calls = []
    return calls
