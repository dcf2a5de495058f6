# relay_provisioning/models.py
# Transient entities of one provisioning run. Nothing here is persisted.

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


class ProvisioningState(str, enum.Enum):
    INIT = "INIT"
    CRED_BOUND = "CRED_BOUND"
    RELAY_CREATED = "RELAY_CREATED"
    RELAY_RUNNING = "RELAY_RUNNING"
    AWAITING_SF_FEEDBACK = "AWAITING_SF_FEEDBACK"
    AWAITING_AWS_SOURCE = "AWAITING_AWS_SOURCE"
    AWS_PROVISIONED = "AWS_PROVISIONED"
    VALIDATING = "VALIDATING"
    PASSED = "PASSED"
    FAILED = "FAILED"


class RelayState(str, enum.Enum):
    CREATED = "CREATED"
    RUN = "RUN"


@dataclass
class CredentialPair:
    access_token: str
    refresh_token: str

    def __repr__(self):
        # never print tokens
        return f"CredentialPair(access_token={self.access_token[:6]}..., refresh_token=***)"


@dataclass(frozen=True)
class NamedCredentialRef:
    id: str
    developer_name: Optional[str]
    label: str


@dataclass
class EventRelayConfig:
    id: str
    channel_name: str
    destination_resource: str
    label: str
    state: RelayState = RelayState.CREATED


@dataclass(frozen=True)
class EventRelayFeedback:
    config_id: str
    remote_resource_name: Optional[str] = None

    @property
    def pending(self) -> bool:
        return not self.remote_resource_name


@dataclass(frozen=True)
class DeliveryTarget:
    id: str
    arn: str

    def as_aws(self) -> Dict[str, str]:
        return {"Id": self.id, "Arn": self.arn}


@dataclass(frozen=True)
class SyntheticEvent:
    type: str
    payload: str
    source: str
    version: str

    # dataclass field -> platform event field
    FIELD_MAP = {
        "type": "Type__c",
        "payload": "Payload__c",
        "source": "Source__c",
        "version": "Version__c",
    }

    @classmethod
    def for_environment(cls, environment: str) -> "SyntheticEvent":
        return cls(
            type="AssetRefreshRequest",
            payload="{'EID': 'TESTEID01'}",
            source=f"salesforce.{environment}.ecrmd.event-relay",
            version="1.0",
        )

    def to_platform_event(self) -> Dict[str, str]:
        return {sf_name: getattr(self, name) for name, sf_name in self.FIELD_MAP.items()}

    def mismatches(self, observed: Dict[str, Any]) -> Dict[str, tuple]:
        """Fields of a relayed platform event payload that differ from this event."""
        diff = {}
        for name, sf_name in self.FIELD_MAP.items():
            sent = getattr(self, name)
            got = observed.get(sf_name)
            if got != sent:
                diff[sf_name] = (sent, got)
        return diff


@dataclass
class ProvisioningOutcome:
    state: ProvisioningState
    event_relay_id: Optional[str] = None
    remote_resource_name: Optional[str] = None
    event_bus_arn: Optional[str] = None
    error: Optional[str] = None
    mismatches: Dict[str, tuple] = field(default_factory=dict)

    @property
    def passed(self) -> bool:
        return self.state is ProvisioningState.PASSED

    def as_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "passed": self.passed,
            "event_relay_id": self.event_relay_id,
            "remote_resource_name": self.remote_resource_name,
            "event_bus_arn": self.event_bus_arn,
            "error": self.error,
        }
