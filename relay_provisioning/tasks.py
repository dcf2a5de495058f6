# relay_provisioning/tasks.py
from celery import shared_task

from .services.provisioning import provision_event_relay


@shared_task(bind=True, name="event_relay.provision_event_relay")
def provision_event_relay_task(self, access_token: str, refresh_token: str):
    """
    One-shot provisioning run. No autoretry: the run is not idempotent,
    a retried task would create a second relay config and bus.
    """
    outcome = provision_event_relay(access_token, refresh_token)
    return outcome.as_dict()
