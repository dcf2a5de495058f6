# relay_provisioning/aws/logs.py
import logging

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..exceptions import EmptyLogGroupError, NoEventsError, ProvisioningError

logger = logging.getLogger(__name__)


class LogInspector:
    def __init__(self, region: str, logs_client=None):
        self.logs = logs_client or boto3.client("logs", region_name=region.lower())

    def most_recent_log_stream(self, log_group: str) -> str:
        try:
            response = self.logs.describe_log_streams(
                logGroupName=log_group,
                orderBy="LastEventTime",
                descending=True,
            )
        except (ClientError, BotoCoreError) as e:
            raise ProvisioningError(f"Error describing log streams: {e}", operation="describeLogStreams", cause=e) from e
        streams = response.get("logStreams") or []
        if not streams:
            raise EmptyLogGroupError(f"No log streams in {log_group}", operation="describeLogStreams")
        name = streams[0]["logStreamName"]
        logger.info("Most recent log stream: %s", name)
        return name

    def most_recent_log_event(self, stream_name: str, log_group: str) -> str:
        try:
            response = self.logs.get_log_events(
                logGroupName=log_group,
                logStreamName=stream_name,
                startFromHead=False,
            )
        except (ClientError, BotoCoreError) as e:
            raise ProvisioningError(f"Error getting log events: {e}", operation="getLogEvents", cause=e) from e
        events = response.get("events") or []
        if not events:
            raise NoEventsError(f"No events in {log_group}/{stream_name}", operation="getLogEvents")
        # events come back oldest first
        newest = sorted(events, key=lambda ev: ev.get("timestamp", 0))[-1]
        logger.debug("Most recent log event: %s", newest)
        return newest["message"]
