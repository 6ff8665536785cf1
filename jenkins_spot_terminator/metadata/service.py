"""
Instance Metadata Service — reads EC2 instance metadata (IMDS).

Uses an IMDSv2 session token when the token endpoint answers, and falls back
to plain IMDSv1 requests when it does not. Transport failures and 5xx
responses are retried a fixed number of times.
"""

import asyncio
import json
import logging
import time
from typing import Any, List, Optional

import httpx

from jenkins_spot_terminator.models.config import DEFAULT_METADATA_URL
from jenkins_spot_terminator.models.node import NodeMetadata

TOKEN_PATH = "/latest/api/token"
TOKEN_TTL_HEADER = "X-aws-ec2-metadata-token-ttl-seconds"
TOKEN_HEADER = "X-aws-ec2-metadata-token"
TOKEN_TTL_SECONDS = 21600
TOKEN_REFRESH_MARGIN_SECONDS = 60

METADATA_PREFIX = "/latest/meta-data/"
SPOT_INSTANCE_ACTION_PATH = "spot/instance-action"
SCHEDULED_MAINTENANCE_EVENTS_PATH = "events/maintenance/scheduled"
INSTANCE_ID_PATH = "instance-id"
INSTANCE_TYPE_PATH = "instance-type"
INSTANCE_LIFE_CYCLE_PATH = "instance-life-cycle"
AVAILABILITY_ZONE_PATH = "placement/availability-zone"
REGION_PATH = "placement/region"
LOCAL_HOSTNAME_PATH = "local-hostname"
LOCAL_IP_PATH = "local-ipv4"
PUBLIC_HOSTNAME_PATH = "public-hostname"
PUBLIC_IP_PATH = "public-ipv4"


class MetadataError(Exception):
    """Raised when instance metadata cannot be retrieved or decoded."""
    pass


class InstanceMetadataService:
    """Async client for the EC2 instance metadata endpoint."""

    def __init__(
        self,
        base_url: str = DEFAULT_METADATA_URL,
        tries: int = 3,
        retry_delay_seconds: float = 1.0,
        client: Optional[httpx.AsyncClient] = None,
        timeout_seconds: float = 10.0,
        logger: Optional[logging.Logger] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.tries = max(1, tries)
        self.retry_delay_seconds = retry_delay_seconds
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)
        self._log = logger or logging.getLogger(__name__)
        self._token: Optional[str] = None
        self._token_expires_at = 0.0
        self._v2_supported = True

    async def __aenter__(self) -> "InstanceMetadataService":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    # --- Typed accessors ---

    async def get_spot_instance_action(self) -> Optional[dict]:
        """The pending spot instance action, or None if there is none."""
        body = await self.get_metadata(SPOT_INSTANCE_ACTION_PATH)
        if body is None:
            return None
        data = self._decode(SPOT_INSTANCE_ACTION_PATH, body)
        if not isinstance(data, dict):
            raise MetadataError(f"unexpected spot instance action payload: {body!r}")
        return data

    async def get_scheduled_events(self) -> List[dict]:
        """All scheduled maintenance events for this instance."""
        body = await self.get_metadata(SCHEDULED_MAINTENANCE_EVENTS_PATH)
        if body is None:
            return []
        data = self._decode(SCHEDULED_MAINTENANCE_EVENTS_PATH, body)
        if not isinstance(data, list):
            raise MetadataError(f"unexpected scheduled events payload: {body!r}")
        return data

    async def get_node_metadata(self) -> NodeMetadata:
        """Describe this node. Only the instance ID is mandatory."""
        instance_id = await self.get_metadata(INSTANCE_ID_PATH)
        if not instance_id:
            raise MetadataError("instance metadata did not return an instance id")

        async def optional(path: str) -> str:
            try:
                return await self.get_metadata(path) or ""
            except MetadataError as e:
                self._log.warning("Unable to fetch metadata %s: %s", path, e)
                return ""

        availability_zone = await optional(AVAILABILITY_ZONE_PATH)
        region = await optional(REGION_PATH) or availability_zone[:-1]
        metadata = NodeMetadata(
            instance_id=instance_id.strip(),
            instance_type=await optional(INSTANCE_TYPE_PATH),
            instance_life_cycle=await optional(INSTANCE_LIFE_CYCLE_PATH),
            availability_zone=availability_zone,
            region=region,
            local_hostname=await optional(LOCAL_HOSTNAME_PATH),
            local_ip=await optional(LOCAL_IP_PATH),
            public_hostname=await optional(PUBLIC_HOSTNAME_PATH),
            public_ip=await optional(PUBLIC_IP_PATH),
        )
        self._log.info("Startup Metadata Retrieved: %s", metadata.model_dump())
        return metadata

    # --- Raw access ---

    async def get_metadata(self, path: str) -> Optional[str]:
        """GET a meta-data path. Returns None when IMDS answers 404."""
        url = self.base_url + METADATA_PREFIX + path
        last_error = ""
        for attempt in range(1, self.tries + 1):
            try:
                response = await self._get(url)
                if response.status_code == 401 and self._token is not None:
                    # Token expired or revoked; fetch a new one and try again.
                    self._token = None
                    response = await self._get(url)
            except httpx.DecodingError as e:
                raise MetadataError(f"undecodable metadata response for {path}: {e}")
            except httpx.RequestError as e:
                last_error = str(e)
            else:
                if response.status_code == 404:
                    return None
                if response.status_code == 200:
                    return response.text
                last_error = f"status code {response.status_code}"
                if response.status_code < 500:
                    break

            if attempt < self.tries:
                self._log.debug(
                    "Retrying metadata request %s (%d/%d): %s",
                    path, attempt, self.tries, last_error,
                )
                await asyncio.sleep(self.retry_delay_seconds)

        raise MetadataError(f"unable to get metadata {path}: {last_error}")

    async def _get(self, url: str) -> httpx.Response:
        headers = {}
        token = await self._get_token()
        if token:
            headers[TOKEN_HEADER] = token
        return await self._client.get(url, headers=headers)

    async def _get_token(self) -> Optional[str]:
        if not self._v2_supported:
            return None
        if self._token is not None and time.monotonic() < self._token_expires_at:
            return self._token

        try:
            response = await self._client.put(
                self.base_url + TOKEN_PATH,
                headers={TOKEN_TTL_HEADER: str(TOKEN_TTL_SECONDS)},
            )
        except httpx.RequestError as e:
            self._log.warning("Unable to retrieve an IMDSv2 token, using IMDSv1: %s", e)
            return None

        if response.status_code in (403, 404, 405):
            self._log.info("IMDSv2 is not available, falling back to IMDSv1")
            self._v2_supported = False
            return None
        if response.status_code != 200:
            self._log.warning(
                "Unable to retrieve an IMDSv2 token (status %d), using IMDSv1",
                response.status_code,
            )
            return None

        self._token = response.text
        self._token_expires_at = (
            time.monotonic() + TOKEN_TTL_SECONDS - TOKEN_REFRESH_MARGIN_SECONDS
        )
        return self._token

    def _decode(self, path: str, body: str) -> Any:
        try:
            return json.loads(body)
        except ValueError as e:
            raise MetadataError(f"unable to decode metadata {path}: {e}")
