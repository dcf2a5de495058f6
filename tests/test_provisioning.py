"""
Tests for the provisioning run: feedback polling bounds, token refresh,
source polling, strict bus provisioning order and end-to-end validation.
Salesforce calls, the EventBridge gateway and the log inspector are mocked.
"""

import json
import logging
from dataclasses import replace
from types import SimpleNamespace

import pytest
from unittest.mock import DEFAULT, MagicMock, call, patch

from relay_provisioning.exceptions import (
    AuthExpiredError,
    AuthRefreshError,
    EmptyLogGroupError,
    MaxIterationsExceeded,
    ProvisioningError,
    RetryBoundExceededError,
    SourceNotFoundError,
)
from relay_provisioning.models import (
    CredentialPair,
    EventRelayConfig,
    EventRelayFeedback,
    NamedCredentialRef,
    ProvisioningState,
    SyntheticEvent,
)
from relay_provisioning.services.provisioning import (
    RelayProvisioner,
    extract_relayed_payload,
    provision_event_relay,
)

SOURCE = "aws.partner/salesforce.com/00D000000000001/0YL000000000001"
BUS_ARN = f"arn:aws:events:eu-central-1:123456789012:event-bus/{SOURCE}"
PENDING = EventRelayFeedback(config_id="7k2000001")
READY = EventRelayFeedback(config_id="7k2000001", remote_resource_name=SOURCE)


def relayed_message(fields):
    """CloudWatch message of a relayed platform event."""
    return json.dumps({
        "version": "0",
        "detail-type": "Asset_Event__e",
        "source": SOURCE,
        "account": "123456789012",
        "detail": {"payload": fields, "schemaId": "0XS000001", "id": "e01000001"},
    })


SENT = SyntheticEvent.for_environment("dev").to_platform_event()


@pytest.fixture
def crm():
    with patch.multiple(
        "relay_provisioning.salesforce.client_rest",
        locate_named_credential=DEFAULT,
        bind_named_credential=DEFAULT,
        create_event_relay_config=DEFAULT,
        activate_event_relay_config=DEFAULT,
        poll_feedback=DEFAULT,
        send_platform_event=DEFAULT,
    ) as mocks:
        mocks["locate_named_credential"].return_value = NamedCredentialRef("0XA000001", "AWS_EventRelay", "AWS Event Relay")
        mocks["create_event_relay_config"].return_value = EventRelayConfig(
            id="7k2000001",
            channel_name="Asset_Channel__chn",
            destination_resource="callout:AWS_EventRelay",
            label="Asset Relay",
        )
        mocks["poll_feedback"].return_value = READY
        mocks["send_platform_event"].return_value = "e01000001"
        yield SimpleNamespace(**mocks)


@pytest.fixture
def refresh():
    with patch("relay_provisioning.salesforce.oauth.refresh_access_token", return_value="at-2") as mock_refresh:
        yield mock_refresh


@pytest.fixture
def bus():
    gateway = MagicMock()
    gateway.event_source_exists.return_value = True
    gateway.create_bus.return_value = BUS_ARN
    gateway.create_discoverer.return_value = BUS_ARN
    gateway.create_routing_rule.return_value = "dev-EventRelay-Rule"
    return gateway


@pytest.fixture
def inspector():
    log_inspector = MagicMock()
    log_inspector.most_recent_log_stream.return_value = "2024/01/01/[$LATEST]abc"
    log_inspector.most_recent_log_event.return_value = relayed_message(dict(SENT))
    return log_inspector


@pytest.fixture
def timed_relay(relay):
    """Distinct delays so recorded sleeps show which loop slept."""
    return replace(relay, feedback_poll_interval=180, source_poll_delay=5, validation_settle_delay=30)


@pytest.fixture
def make_provisioner(relay, bus, inspector, sleeps):
    def _make(relay_settings=None, credentials=None):
        return RelayProvisioner(
            credentials or CredentialPair(access_token="at-1", refresh_token="rt-1"),
            relay=relay_settings or relay,
            bus=bus,
            log_inspector=inspector,
            sleep=sleeps.append,
        )
    return _make


# ---- Happy path -------------------------------------------------------------

def test_run_passes(make_provisioner, crm, bus, inspector, refresh):
    outcome = make_provisioner().run()

    assert outcome.state is ProvisioningState.PASSED
    assert outcome.passed
    assert outcome.event_relay_id == "7k2000001"
    assert outcome.remote_resource_name == SOURCE
    assert outcome.event_bus_arn == BUS_ARN
    assert outcome.error is None
    refresh.assert_not_called()


def test_run_salesforce_setup_order(make_provisioner, crm, relay):
    provisioner = make_provisioner()
    provisioner.run()

    crm.locate_named_credential.assert_called_once_with("at-1", relay)
    crm.bind_named_credential.assert_called_once_with("at-1", "0XA000001", relay)
    crm.create_event_relay_config.assert_called_once_with("at-1", relay)
    config = crm.create_event_relay_config.return_value
    crm.activate_event_relay_config.assert_called_once_with("at-1", config, relay)
    crm.poll_feedback.assert_called_once_with("at-1", "7k2000001", relay)


def test_bus_provisioning_order(make_provisioner, crm, bus, relay):
    make_provisioner().run()

    assert [c[0] for c in bus.method_calls] == [
        "event_source_exists",
        "create_bus",
        "create_discoverer",
        "create_routing_rule",
        "attach_targets",
    ]
    bus.create_bus.assert_called_once_with(SOURCE)
    bus.create_discoverer.assert_called_once_with(BUS_ARN)
    bus.create_routing_rule.assert_called_once_with(BUS_ARN)
    bus.attach_targets.assert_called_once_with(BUS_ARN, relay.targets)


def test_state_sequence(make_provisioner, crm, caplog, monkeypatch):
    # LOGGING keeps the app logger off the root logger, caplog listens on root
    monkeypatch.setattr(logging.getLogger("relay_provisioning"), "propagate", True)
    caplog.set_level("INFO", logger="relay_provisioning")
    make_provisioner().run()

    transitions = [r.getMessage() for r in caplog.records if " -> " in r.getMessage()]
    assert transitions == [
        "INIT -> CRED_BOUND",
        "CRED_BOUND -> RELAY_CREATED",
        "RELAY_CREATED -> RELAY_RUNNING",
        "RELAY_RUNNING -> AWAITING_SF_FEEDBACK",
        "AWAITING_SF_FEEDBACK -> AWAITING_AWS_SOURCE",
        "AWAITING_AWS_SOURCE -> AWS_PROVISIONED",
        "AWS_PROVISIONED -> VALIDATING",
        "VALIDATING -> PASSED",
    ]


# ---- Feedback polling -------------------------------------------------------

@pytest.mark.parametrize("pending_calls", [0, 1, 3, 4])
def test_feedback_pending_then_ready(make_provisioner, crm, bus, timed_relay, sleeps, pending_calls):
    crm.poll_feedback.side_effect = [PENDING] * pending_calls + [READY]

    outcome = make_provisioner(timed_relay).run()

    assert outcome.passed
    assert crm.poll_feedback.call_count == pending_calls + 1
    bus.event_source_exists.assert_called_once_with(SOURCE)
    assert sleeps == [180] * pending_calls + [30]


def test_feedback_bound_exceeded(make_provisioner, crm, bus, timed_relay, sleeps):
    crm.poll_feedback.return_value = PENDING

    outcome = make_provisioner(timed_relay).run()

    assert outcome.state is ProvisioningState.FAILED
    assert crm.poll_feedback.call_count == timed_relay.feedback_max_iterations
    assert "Max iterations reached" in outcome.error
    # no sleep after the last attempt
    assert sleeps == [180] * (timed_relay.feedback_max_iterations - 1)
    bus.event_source_exists.assert_not_called()


def test_await_feedback_raises_retry_bound(make_provisioner, crm):
    crm.poll_feedback.return_value = PENDING

    with pytest.raises(MaxIterationsExceeded) as exc:
        make_provisioner().await_feedback("7k2000001")

    assert isinstance(exc.value, RetryBoundExceededError)
    assert exc.value.attempts == 5


def test_expired_token_refreshed_once(make_provisioner, crm, refresh, relay, sleeps):
    crm.poll_feedback.side_effect = [AuthExpiredError(operation="fetchRemoteResource"), READY]
    provisioner = make_provisioner()

    outcome = provisioner.run()

    assert outcome.passed
    refresh.assert_called_once_with("rt-1", relay)
    assert crm.poll_feedback.call_args_list == [
        call("at-1", "7k2000001", relay),
        call("at-2", "7k2000001", relay),
    ]
    crm.send_platform_event.assert_called_once_with("at-2", SENT, relay)
    assert provisioner.credentials.access_token == "at-2"
    assert provisioner.credentials.refresh_token == "rt-1"
    # the refreshed poll does not wait
    assert sleeps == [relay.validation_settle_delay]


def test_refresh_counts_toward_iteration_bound(make_provisioner, crm, refresh, relay):
    crm.poll_feedback.side_effect = AuthExpiredError()

    outcome = make_provisioner().run()

    assert outcome.state is ProvisioningState.FAILED
    assert crm.poll_feedback.call_count == relay.feedback_max_iterations
    assert refresh.call_count == relay.feedback_max_iterations


def test_refresh_and_pending_share_budget(make_provisioner, crm, refresh, relay):
    crm.poll_feedback.side_effect = [PENDING, AuthExpiredError(), PENDING, PENDING, READY]

    outcome = make_provisioner().run()

    assert outcome.passed
    assert crm.poll_feedback.call_count == 5 == relay.feedback_max_iterations
    refresh.assert_called_once()


def test_failed_refresh_aborts(make_provisioner, crm, refresh, bus):
    crm.poll_feedback.side_effect = AuthExpiredError()
    refresh.side_effect = AuthRefreshError("Unable to refresh access token", operation="refreshAccessToken")

    outcome = make_provisioner().run()

    assert outcome.state is ProvisioningState.FAILED
    assert crm.poll_feedback.call_count == 1
    refresh.assert_called_once()
    bus.event_source_exists.assert_not_called()


def test_expired_token_outside_feedback_loop_is_fatal(make_provisioner, crm, refresh):
    crm.bind_named_credential.side_effect = AuthExpiredError(operation="patchNamedCredential")

    outcome = make_provisioner().run()

    assert outcome.state is ProvisioningState.FAILED
    refresh.assert_not_called()
    crm.create_event_relay_config.assert_not_called()


# ---- Source polling ---------------------------------------------------------

def test_source_appears_after_retries(make_provisioner, crm, bus, timed_relay, sleeps):
    bus.event_source_exists.side_effect = [False, False, True]

    outcome = make_provisioner(timed_relay).run()

    assert outcome.passed
    assert bus.event_source_exists.call_count == 3
    assert sleeps == [5, 5, 30]


def test_source_found_on_last_retry(make_provisioner, crm, bus, relay):
    bus.event_source_exists.side_effect = [False] * relay.source_max_retries + [True]

    assert make_provisioner().run().passed


def test_source_never_appears(make_provisioner, crm, bus, relay):
    bus.event_source_exists.return_value = False
    provisioner = make_provisioner()

    with pytest.raises(SourceNotFoundError):
        provisioner.await_event_source(SOURCE)

    assert bus.event_source_exists.call_count == relay.source_max_retries + 1
    bus.create_bus.assert_not_called()


def test_source_never_appears_fails_run(make_provisioner, crm, bus):
    bus.event_source_exists.return_value = False

    outcome = make_provisioner().run()

    assert outcome.state is ProvisioningState.FAILED
    assert "Failed to retrieve event source" in outcome.error


# ---- Bus provisioning -------------------------------------------------------

def test_discoverer_failure_stops_chain(make_provisioner, crm, bus):
    bus.create_discoverer.side_effect = ProvisioningError("Error creating discoverer", operation="createDiscoverer")

    outcome = make_provisioner().run()

    assert outcome.state is ProvisioningState.FAILED
    bus.create_routing_rule.assert_not_called()
    bus.attach_targets.assert_not_called()
    crm.send_platform_event.assert_not_called()
    # the bus stays, nothing is rolled back
    assert outcome.event_bus_arn == BUS_ARN
    assert not any(name.startswith("delete") for name, *_ in bus.method_calls)


# ---- Validation -------------------------------------------------------------

def test_validation_sends_then_reads_logs(make_provisioner, crm, inspector, relay):
    manager = MagicMock()
    manager.attach_mock(crm.send_platform_event, "send")
    manager.attach_mock(inspector.most_recent_log_stream, "stream")
    manager.attach_mock(inspector.most_recent_log_event, "event")

    make_provisioner().run()

    assert [c[0] for c in manager.mock_calls] == ["send", "stream", "event"]
    inspector.most_recent_log_stream.assert_called_once_with("/aws/events/relay")
    inspector.most_recent_log_event.assert_called_once_with("2024/01/01/[$LATEST]abc", "/aws/events/relay")


def test_synthetic_event_fields(make_provisioner, crm, relay):
    make_provisioner().run()

    crm.send_platform_event.assert_called_once_with("at-1", {
        "Type__c": "AssetRefreshRequest",
        "Payload__c": "{'EID': 'TESTEID01'}",
        "Source__c": "salesforce.dev.ecrmd.event-relay",
        "Version__c": "1.0",
    }, relay)


@pytest.mark.parametrize("field_name", ["Type__c", "Payload__c", "Source__c", "Version__c"])
def test_single_field_mismatch_fails(make_provisioner, crm, inspector, field_name):
    observed = dict(SENT)
    observed[field_name] = observed[field_name] + " "
    inspector.most_recent_log_event.return_value = relayed_message(observed)

    outcome = make_provisioner().run()

    assert outcome.state is ProvisioningState.FAILED
    assert list(outcome.mismatches) == [field_name]


def test_extra_payload_fields_are_ignored(make_provisioner, crm, inspector):
    observed = dict(SENT, CreatedDate="2024-01-01T00:00:00Z", CreatedById="005000000000001")
    inspector.most_recent_log_event.return_value = relayed_message(observed)

    assert make_provisioner().run().passed


def test_missing_payload_fails(make_provisioner, crm, inspector):
    inspector.most_recent_log_event.return_value = json.dumps({"detail": {}})

    outcome = make_provisioner().run()

    assert outcome.state is ProvisioningState.FAILED
    assert set(outcome.mismatches) == {"Type__c", "Payload__c", "Source__c", "Version__c"}


def test_empty_log_group_fails(make_provisioner, crm, inspector):
    inspector.most_recent_log_stream.side_effect = EmptyLogGroupError("No log streams", operation="describeLogStreams")

    outcome = make_provisioner().run()

    assert outcome.state is ProvisioningState.FAILED
    assert "describeLogStreams" in outcome.error


@pytest.mark.parametrize("message", [
    "not json",
    "[]",
    json.dumps({"detail": {"payload": "flat"}}),
    json.dumps({"detail": "text"}),
    json.dumps({"detail": []}),
    json.dumps({"detail": 42}),
])
def test_extract_relayed_payload_unusable(message):
    assert extract_relayed_payload(message) == {}


def test_non_object_detail_fails_run(make_provisioner, crm, inspector):
    inspector.most_recent_log_event.return_value = json.dumps({"detail": "plain text"})

    outcome = make_provisioner().run()

    assert outcome.state is ProvisioningState.FAILED
    assert set(outcome.mismatches) == {"Type__c", "Payload__c", "Source__c", "Version__c"}


def test_provision_event_relay_wrapper(crm, bus, inspector, relay, sleeps):
    outcome = provision_event_relay(
        "at-1", "rt-1", relay=relay, bus=bus, log_inspector=inspector, sleep=sleeps.append,
    )

    assert outcome.passed
    crm.locate_named_credential.assert_called_once_with("at-1", relay)
