# relay_provisioning/aws/event_bridge.py
import json
import logging
from typing import Iterable, List

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..conf import RelaySettings
from ..exceptions import ProvisioningError
from ..models import DeliveryTarget

logger = logging.getLogger(__name__)

PARTNER_SOURCE_PREFIX = "aws.partner/salesforce.com"
RELAY_TAG_KEY = "salesforce-event-relay"
RELAY_TAG_VALUE = "salesforce event relay"


class RemoteBusGateway:
    """
    EventBridge side of the relay: partner event source lookup, then the
    bus -> discoverer -> rule -> targets chain. No retries in here.
    """

    def __init__(self, relay: RelaySettings, events_client=None, schemas_client=None):
        self.relay = relay
        region = relay.aws_region.lower()
        self.events = events_client or boto3.client("events", region_name=region)
        self.schemas = schemas_client or boto3.client("schemas", region_name=region)

    def _tags(self) -> List[dict]:
        return [
            {"Key": RELAY_TAG_KEY, "Value": RELAY_TAG_VALUE},
            {"Key": "environment", "Value": self.relay.environment},
        ]

    def event_source_exists(self, source_name: str) -> bool:
        try:
            response = self.events.list_event_sources(NamePrefix=source_name)
        except (ClientError, BotoCoreError) as e:
            raise ProvisioningError(f"Error listing event sources: {e}", operation="listEventSources", cause=e) from e
        sources = response.get("EventSources") or []
        # NamePrefix also matches longer names; only an exact name counts
        return bool(sources) and sources[0].get("Name") == source_name

    def create_bus(self, source_name: str) -> str:
        try:
            response = self.events.create_event_bus(
                Name=source_name,
                EventSourceName=source_name,
                Tags=self._tags(),
            )
        except (ClientError, BotoCoreError) as e:
            raise ProvisioningError(f"Error creating event bus: {e}", operation="createEventBus", cause=e) from e
        bus_arn = response["EventBusArn"]
        logger.info("Created event bus %s", bus_arn)
        return bus_arn

    def create_discoverer(self, bus_arn: str) -> str:
        try:
            response = self.schemas.create_discoverer(
                Description="Salesforce Event Relay Discoverer",
                SourceArn=bus_arn,
                Tags={RELAY_TAG_KEY: RELAY_TAG_VALUE, "environment": self.relay.environment},
            )
        except (ClientError, BotoCoreError) as e:
            raise ProvisioningError(f"Error creating discoverer: {e}", operation="createDiscoverer", cause=e) from e
        logger.info("Created discoverer %s for %s", response.get("DiscovererId"), bus_arn)
        return bus_arn

    def event_pattern(self) -> str:
        return json.dumps({
            "source": [{"prefix": PARTNER_SOURCE_PREFIX}],
            "detail-type": [self.relay.platform_event_name],
        })

    def create_routing_rule(self, bus_arn: str) -> str:
        try:
            response = self.events.put_rule(
                Name=self.relay.rule_name,
                EventBusName=bus_arn,
                EventPattern=self.event_pattern(),
                State="ENABLED",
                Description="Salesforce Event Relay Rule",
                Tags=self._tags(),
            )
        except (ClientError, BotoCoreError) as e:
            raise ProvisioningError(f"Error creating rule: {e}", operation="createRule", cause=e) from e
        logger.info("Created rule %s (%s)", self.relay.rule_name, response.get("RuleArn"))
        return self.relay.rule_name

    def attach_targets(self, bus_arn: str, targets: Iterable[DeliveryTarget]) -> None:
        aws_targets = [t.as_aws() for t in targets]
        if not aws_targets:
            raise ProvisioningError("No delivery targets configured (TARGET_ID_1/TARGET_ARN_1)", operation="createTarget")
        try:
            response = self.events.put_targets(
                Rule=self.relay.rule_name,
                EventBusName=bus_arn,
                Targets=aws_targets,
            )
        except (ClientError, BotoCoreError) as e:
            raise ProvisioningError(f"Error creating targets: {e}", operation="createTarget", cause=e) from e
        if response.get("FailedEntryCount"):
            raise ProvisioningError(
                f"Error creating targets: {response.get('FailedEntries')}",
                operation="createTarget",
            )
        logger.info("Attached %d target(s) to %s", len(aws_targets), self.relay.rule_name)
