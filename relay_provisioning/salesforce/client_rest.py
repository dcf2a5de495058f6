# relay_provisioning/salesforce/client_rest.py
"""
Salesforce setup calls for the event relay (tooling API + REST).

Every function takes the current access token explicitly: the token may be
replaced mid-run by a refresh, so no session is cached between calls.
"""
import json
import logging
from typing import Any, Callable, Dict, Optional

import requests
from simple_salesforce import Salesforce
from simple_salesforce.exceptions import SalesforceError, SalesforceExpiredSession

from ..conf import RelaySettings
from ..exceptions import (
    AuthExpiredError,
    CreationError,
    HttpStatusError,
    RecordNotFoundError,
    RelaySetupError,
)
from ..models import EventRelayConfig, EventRelayFeedback, NamedCredentialRef, RelayState

logger = logging.getLogger(__name__)


def _api_version(version: str) -> str:
    # "v59.0" in .env, simple_salesforce wants "59.0"
    return version[1:] if version.lower().startswith("v") else version


def get_sf(access_token: str, relay: RelaySettings) -> Salesforce:
    return Salesforce(
        instance_url=relay.base_url,
        session_id=access_token,
        version=_api_version(relay.api_version),
    )


def _call(operation: str, fn: Callable[..., Any], *args, **kwargs) -> Any:
    """Run a simple_salesforce call, re-raising failures with the operation name."""
    try:
        return fn(*args, **kwargs)
    except SalesforceExpiredSession as e:
        raise AuthExpiredError(operation=operation, cause=e) from e
    except SalesforceError as e:
        raise HttpStatusError(e.status, str(e.content)[:500], operation=operation, cause=e) from e
    except requests.RequestException as e:
        raise RelaySetupError(str(e), operation=operation, cause=e) from e


def _soql_literal(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


# ---- Named credential -------------------------------------------------------

def locate_named_credential(access_token: str, relay: RelaySettings) -> NamedCredentialRef:
    sf = get_sf(access_token, relay)
    soql = (
        "SELECT Id, DeveloperName FROM NamedCredential "
        f"WHERE MasterLabel = '{_soql_literal(relay.named_cred_label)}'"
    )
    result = _call("fetchNamedCredential", sf.toolingexecute, "query/", params={"q": soql})
    if not isinstance(result, dict):
        # non-JSON body comes back as text
        result = {}
    records = result.get("records") or []
    if not records or not records[0].get("Id"):
        raise RecordNotFoundError(
            f"Named Credential not found for label {relay.named_cred_label!r}",
            operation="fetchNamedCredential",
        )
    rec = records[0]
    logger.info("Retrieved named credential %s (%s)", rec["Id"], rec.get("DeveloperName"))
    return NamedCredentialRef(id=rec["Id"], developer_name=rec.get("DeveloperName"), label=relay.named_cred_label)


def named_credential_metadata(relay: RelaySettings) -> Dict[str, Any]:
    """
    The only shape the named credential is ever patched with: endpoint points
    at the AWS account, no authentication (the relay trusts the AWS account).
    """
    return {
        "FullName": relay.named_cred_name,
        "Metadata": {
            "label": relay.named_cred_label,
            "endpoint": relay.named_credential_endpoint,
            "principalType": "Anonymous",
            "protocol": "NoAuthentication",
        },
    }


def bind_named_credential(access_token: str, named_credential_id: str, relay: RelaySettings) -> None:
    sf = get_sf(access_token, relay)
    _call(
        "patchNamedCredential",
        sf.toolingexecute,
        f"sobjects/NamedCredential/{named_credential_id}",
        method="PATCH",
        data=named_credential_metadata(relay),
    )
    logger.info("Named credential %s patched to %s", named_credential_id, relay.named_credential_endpoint)


# ---- Event relay config -----------------------------------------------------

def create_event_relay_config(access_token: str, relay: RelaySettings) -> EventRelayConfig:
    sf = get_sf(access_token, relay)
    destination = f"callout:{relay.named_cred_name}"
    body = {
        "FullName": relay.event_relay_name,
        "Metadata": {
            "eventChannel": relay.event_channel_name,
            "destinationResourceName": destination,
            "label": relay.event_relay_label,
            "relayOption": json.dumps({"ReplayRecovery": "LATEST"}, separators=(",", ":")),
        },
    }
    result = _call("createEventRelay", sf.toolingexecute, "sobjects/EventRelayConfig/", method="POST", data=body)
    relay_id = result.get("id") if isinstance(result, dict) else None
    if not relay_id:
        raise CreationError("Event Relay ID not found", operation="createEventRelay")
    logger.info("Created event relay %s (%s)", relay_id, relay.event_relay_name)
    return EventRelayConfig(
        id=relay_id,
        channel_name=relay.event_channel_name,
        destination_resource=destination,
        label=relay.event_relay_label,
        state=RelayState.CREATED,
    )


def activate_event_relay_config(access_token: str, config: EventRelayConfig, relay: RelaySettings) -> EventRelayConfig:
    sf = get_sf(access_token, relay)
    _call(
        "patchEventRelayToRun",
        sf.toolingexecute,
        f"sobjects/EventRelayConfig/{config.id}",
        method="PATCH",
        data={"Metadata": {"state": RelayState.RUN.value}},
    )
    config.state = RelayState.RUN
    logger.info("Event relay %s state patched to RUN", config.id)
    return config


def poll_feedback(access_token: str, config_id: str, relay: RelaySettings) -> EventRelayFeedback:
    """Single feedback query. remote_resource_name stays None until Salesforce links the partner source."""
    sf = get_sf(access_token, relay)
    soql = (
        "SELECT Id, EventRelayConfigId, RemoteResource FROM EventRelayFeedback "
        f"WHERE EventRelayConfigId='{_soql_literal(config_id)}'"
    )
    result = _call("fetchRemoteResource", sf.query, soql) or {}
    records = result.get("records") or []
    remote: Optional[str] = records[0].get("RemoteResource") if records else None
    return EventRelayFeedback(config_id=config_id, remote_resource_name=remote or None)


# ---- Platform events --------------------------------------------------------

def send_platform_event(access_token: str, fields: Dict[str, Any], relay: RelaySettings) -> Optional[str]:
    sf = get_sf(access_token, relay)
    result = _call(
        "sendTestEvent",
        sf.restful,
        f"sobjects/{relay.platform_event_name}/",
        method="POST",
        json=fields,
    ) or {}
    event_id = result.get("id")
    if event_id:
        logger.info("Successfully created %s with ID %s", relay.platform_event_name, event_id)
    return event_id
