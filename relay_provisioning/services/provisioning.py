# relay_provisioning/services/provisioning.py
"""
Event relay provisioning run.

    INIT -> CRED_BOUND -> RELAY_CREATED -> RELAY_RUNNING -> AWAITING_SF_FEEDBACK
         -> AWAITING_AWS_SOURCE -> AWS_PROVISIONED -> VALIDATING -> PASSED | FAILED

Salesforce creates the partner event source in AWS some minutes after the
relay is switched to RUN; it reports the source name through
EventRelayFeedback.RemoteResource. Both sides are eventually consistent, so
each waiting step is a bounded polling loop.

Nothing is rolled back: a failure after the bus was created leaves the bus
(and the Salesforce relay config) in place. Re-running without cleanup
creates duplicates.
"""
import json
import logging
import time
from typing import Any, Callable, Dict, Optional

from ..aws.event_bridge import RemoteBusGateway
from ..aws.logs import LogInspector
from ..conf import RelaySettings, load_relay_settings
from ..exceptions import (
    AuthExpiredError,
    MaxIterationsExceeded,
    RelaySetupError,
    SourceNotFoundError,
    ValidationMismatchError,
)
from ..models import (
    CredentialPair,
    EventRelayConfig,
    ProvisioningOutcome,
    ProvisioningState,
    SyntheticEvent,
)
from ..salesforce import client_rest, oauth

logger = logging.getLogger(__name__)


def extract_relayed_payload(message: str) -> Dict[str, Any]:
    """Platform event fields from a relayed EventBridge event logged as JSON ({"detail": {"payload": {...}}})."""
    try:
        data = json.loads(message)
    except (TypeError, ValueError):
        logger.warning("Log event is not JSON: %.200s", message)
        return {}
    detail = data.get("detail") if isinstance(data, dict) else None
    payload = detail.get("payload") if isinstance(detail, dict) else None
    if not isinstance(payload, dict):
        logger.warning("Payload not found in log stream event")
        return {}
    return payload


class RelayProvisioner:
    def __init__(
        self,
        credentials: CredentialPair,
        relay: Optional[RelaySettings] = None,
        bus: Optional[RemoteBusGateway] = None,
        log_inspector: Optional[LogInspector] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.credentials = credentials
        self.relay = relay or load_relay_settings()
        self.bus = bus or RemoteBusGateway(self.relay)
        self.log_inspector = log_inspector or LogInspector(self.relay.aws_region)
        self.sleep = sleep
        self.outcome = ProvisioningOutcome(state=ProvisioningState.INIT)

    @property
    def state(self) -> ProvisioningState:
        return self.outcome.state

    def _transition(self, state: ProvisioningState) -> None:
        logger.info("%s -> %s", self.outcome.state.value, state.value)
        self.outcome.state = state

    # ---- Salesforce side ----------------------------------------------------

    def bind_named_credential(self) -> None:
        ref = client_rest.locate_named_credential(self.credentials.access_token, self.relay)
        client_rest.bind_named_credential(self.credentials.access_token, ref.id, self.relay)
        self._transition(ProvisioningState.CRED_BOUND)

    def create_relay(self) -> EventRelayConfig:
        config = client_rest.create_event_relay_config(self.credentials.access_token, self.relay)
        self.outcome.event_relay_id = config.id
        self._transition(ProvisioningState.RELAY_CREATED)
        return config

    def activate_relay(self, config: EventRelayConfig) -> None:
        client_rest.activate_event_relay_config(self.credentials.access_token, config, self.relay)
        self._transition(ProvisioningState.RELAY_RUNNING)

    def refresh_access_token(self) -> str:
        access_token = oauth.refresh_access_token(self.credentials.refresh_token, self.relay)
        self.credentials.access_token = access_token
        return access_token

    def await_feedback(self, config_id: str) -> str:
        """
        Poll EventRelayFeedback until RemoteResource is populated.
        A 401 refreshes the access token and uses up one iteration of the same
        budget as a PENDING answer; the refreshed poll happens without sleeping.
        """
        self._transition(ProvisioningState.AWAITING_SF_FEEDBACK)
        max_iterations = self.relay.feedback_max_iterations

        for attempt in range(1, max_iterations + 1):
            try:
                feedback = client_rest.poll_feedback(self.credentials.access_token, config_id, self.relay)
            except AuthExpiredError:
                logger.warning("Access token expired (attempt %d/%d) - refreshing", attempt, max_iterations)
                self.refresh_access_token()
                continue

            if not feedback.pending:
                logger.info("Remote Resource is populated in Salesforce: %s", feedback.remote_resource_name)
                self.outcome.remote_resource_name = feedback.remote_resource_name
                return feedback.remote_resource_name

            logger.info("Remote Resource not populated yet (attempt %d/%d)", attempt, max_iterations)
            if attempt < max_iterations:
                self.sleep(self.relay.feedback_poll_interval)

        raise MaxIterationsExceeded(
            f"Max iterations reached ({max_iterations})",
            attempts=max_iterations,
            operation="fetchRemoteResource",
        )

    # ---- AWS side -----------------------------------------------------------

    def await_event_source(self, source_name: str) -> None:
        self._transition(ProvisioningState.AWAITING_AWS_SOURCE)
        max_retries = self.relay.source_max_retries

        retries = 0
        while not self.bus.event_source_exists(source_name):
            if retries >= max_retries:
                raise SourceNotFoundError(
                    f"Failed to retrieve event source {source_name} from AWS after {max_retries} retries",
                    attempts=retries + 1,
                    operation="listEventSources",
                )
            self.sleep(self.relay.source_poll_delay)
            retries += 1
        logger.info("Event source %s retrieved from AWS", source_name)

    def provision_bus(self, source_name: str) -> str:
        bus_arn = self.bus.create_bus(source_name)
        self.outcome.event_bus_arn = bus_arn
        self.bus.create_discoverer(bus_arn)
        self.bus.create_routing_rule(bus_arn)
        self.bus.attach_targets(bus_arn, self.relay.targets)
        self._transition(ProvisioningState.AWS_PROVISIONED)
        return bus_arn

    # ---- Validation ---------------------------------------------------------

    def validate(self) -> None:
        self._transition(ProvisioningState.VALIDATING)
        event = SyntheticEvent.for_environment(self.relay.environment)
        client_rest.send_platform_event(self.credentials.access_token, event.to_platform_event(), self.relay)

        logger.info("Waiting %ss for logs to populate...", self.relay.validation_settle_delay)
        self.sleep(self.relay.validation_settle_delay)

        group = self.relay.log_group_name
        stream = self.log_inspector.most_recent_log_stream(group)
        message = self.log_inspector.most_recent_log_event(stream, group)

        mismatches = event.mismatches(extract_relayed_payload(message))
        if mismatches:
            raise ValidationMismatchError(mismatches)
        logger.info("Message sent matches message received")
        self._transition(ProvisioningState.PASSED)

    def run(self) -> ProvisioningOutcome:
        try:
            self.bind_named_credential()
            config = self.create_relay()
            self.activate_relay(config)
            source_name = self.await_feedback(config.id)
            self.await_event_source(source_name)
            self.provision_bus(source_name)
            self.validate()
        except ValidationMismatchError as e:
            for field_name, (sent, got) in sorted(e.mismatches.items()):
                logger.error("%s: sent %r, received %r", field_name, sent, got)
            self.outcome.mismatches = e.mismatches
            self.outcome.error = str(e)
            self._transition(ProvisioningState.FAILED)
        except RelaySetupError as e:
            logger.error("Provisioning failed in %s: %s", self.outcome.state.value, e)
            self.outcome.error = str(e)
            self._transition(ProvisioningState.FAILED)
        return self.outcome


def provision_event_relay(access_token: str, refresh_token: str, **kwargs) -> ProvisioningOutcome:
    credentials = CredentialPair(access_token=access_token, refresh_token=refresh_token)
    return RelayProvisioner(credentials, **kwargs).run()
