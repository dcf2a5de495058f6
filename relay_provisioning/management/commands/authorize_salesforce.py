import sys
import webbrowser

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from django.core.management.base import BaseCommand

from relay_provisioning.conf import load_relay_settings
from relay_provisioning.services.callback_server import CallbackServer
from relay_provisioning.tasks import provision_event_relay_task

from .provision_event_relay import report


class Command(BaseCommand):
    help = "Interactive Salesforce OAuth flow, then provision and validate the event relay."

    def add_arguments(self, parser):
        parser.add_argument("--port", type=int, default=settings.CALLBACK_PORT)
        parser.add_argument("--no-browser", action="store_true")

    def handle(self, *args, **opts):
        try:
            relay = load_relay_settings()
        except ImproperlyConfigured as e:
            self.stderr.write(str(e))
            sys.exit(1)
        if not relay.auth_token_endpoint:
            self.stderr.write("Set AUTH_TOKEN_ENDPOINT in env.")
            sys.exit(1)

        server = CallbackServer(relay, port=opts["port"])
        login_url = f"http://localhost:{server.port}/login"
        self.stdout.write(f"AUTHENTICATE HERE: {login_url}")
        if not opts["no_browser"]:
            try:
                webbrowser.open(login_url)
            except webbrowser.Error:
                self.stdout.write("Open this URL manually if the browser didn't open.")

        credentials = server.wait_for_credentials()
        self.stdout.write(self.style.SUCCESS("Success - access token and refresh token received"))

        result = provision_event_relay_task.apply(
            kwargs={"access_token": credentials.access_token, "refresh_token": credentials.refresh_token},
        ).get()
        report(self, result)
