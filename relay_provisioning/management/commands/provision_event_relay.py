# provision_event_relay.py
import sys

from django.core.exceptions import ImproperlyConfigured
from django.core.management.base import BaseCommand

from relay_provisioning.tasks import provision_event_relay_task


class Command(BaseCommand):
    help = "Provision the Salesforce -> EventBridge event relay with an existing token pair and validate it."

    def add_arguments(self, parser):
        parser.add_argument("--access-token", required=True)
        parser.add_argument("--refresh-token", required=True)

    def handle(self, *args, **options):
        # executed locally, without a broker
        try:
            result = provision_event_relay_task.apply(
                kwargs={"access_token": options["access_token"], "refresh_token": options["refresh_token"]},
            ).get()
        except ImproperlyConfigured as e:
            self.stderr.write(str(e))
            sys.exit(1)
        report(self, result)


def report(command: BaseCommand, result: dict):
    if result["passed"]:
        command.stdout.write(command.style.SUCCESS(
            f"Event relay validated: {result['event_relay_id']} -> {result['event_bus_arn']}"
        ))
        sys.exit(0)
    command.stderr.write(f"Event relay provisioning failed ({result['state']}): {result['error']}")
    sys.exit(1)
