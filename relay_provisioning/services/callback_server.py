# relay_provisioning/services/callback_server.py
import logging
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Callable, Optional
from urllib.parse import parse_qs, urlparse

from ..conf import RelaySettings
from ..exceptions import TokenExchangeError
from ..models import CredentialPair
from ..salesforce import oauth

logger = logging.getLogger(__name__)


def make_handler(relay: RelaySettings, on_credentials: Callable[[CredentialPair], None]):
    class CallbackHandler(BaseHTTPRequestHandler):
        def _reply(self, status: int, text: str, location: Optional[str] = None):
            body = text.encode("utf-8")
            self.send_response(status)
            if location:
                self.send_header("Location", location)
            self.send_header("Content-Type", "text/plain; charset=utf-8")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)

        def do_GET(self):
            url = urlparse(self.path)
            if url.path == "/login":
                self._reply(302, "Redirecting to Salesforce", location=oauth.authorize_url(relay))
                return
            if url.path != "/callback":
                self._reply(404, "Not found")
                return

            code = parse_qs(url.query).get("code", [None])[0]
            if not code:
                logger.error("No authorization code in the request - try authenticating again: /login")
                self._reply(400, "Authorization code not found in the request")
                return

            try:
                credentials = oauth.exchange_code(code, relay)
            except TokenExchangeError as e:
                logger.error("Error retrieving access token: %s", e)
                self._reply(500, "Error retrieving access token")
                return

            on_credentials(credentials)
            self._reply(
                200,
                "Successfully authenticated with Salesforce. "
                "Please close this window and return to the terminal.",
            )

        def log_message(self, fmt, *args):
            logger.debug("callback server: " + fmt, *args)

    return CallbackHandler


class CallbackServer:
    """Local OAuth endpoint: serves /login and /callback until one token pair arrives."""

    def __init__(self, relay: RelaySettings, port: int, host: str = "localhost"):
        self.credentials: Optional[CredentialPair] = None
        self.httpd = HTTPServer((host, port), make_handler(relay, self._received))

    @property
    def port(self) -> int:
        return self.httpd.server_address[1]

    def _received(self, credentials: CredentialPair) -> None:
        self.credentials = credentials

    def wait_for_credentials(self) -> CredentialPair:
        try:
            while self.credentials is None:
                self.httpd.handle_request()
        finally:
            self.httpd.server_close()
        return self.credentials
