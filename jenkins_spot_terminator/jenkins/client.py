"""
Jenkins Master — the agent state client.

Toggles this node's agent between online and offline on the Jenkins master.

Behavioral Contract:
- Jenkins only exposes a toggle, not a set. Calling it on an agent that is
  already in the wanted state would flip it the wrong way, so both directions
  check the current status first and only toggle when needed.
- Network, timeout and redirect failures raise TransportError; a non-200
  status, a body that cannot be decompressed, or an undecodable status
  payload raises ProtocolError.
- No state is kept besides the node identity, the credentials and the HTTP client.
"""

import logging
from typing import Optional

import httpx
from pydantic import ValidationError

from jenkins_spot_terminator.models.node import AgentStatus, NodeMetadata

TOGGLE_OFFLINE_PATH = "/computer/{name}/toggleOffline"
AGENT_INFORMATION_PATH = "/computer/{name}/api/json"


class JenkinsError(Exception):
    """Base class for failures talking to the Jenkins master."""
    pass


class TransportError(JenkinsError):
    """The Jenkins master could not be reached."""
    pass


class ProtocolError(JenkinsError):
    """The Jenkins master answered with an unexpected status or body."""
    pass


class JenkinsMaster:
    """Client for the agent endpoints of a Jenkins master."""

    def __init__(
        self,
        base_url: str,
        user: str,
        token: str,
        node: NodeMetadata,
        client: Optional[httpx.AsyncClient] = None,
        timeout_seconds: float = 10.0,
        logger: Optional[logging.Logger] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.node = node
        self._auth = httpx.BasicAuth(user, token)
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)
        self._log = logger or logging.getLogger(__name__)

    async def __aenter__(self) -> "JenkinsMaster":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    @property
    def agent_name(self) -> str:
        return self.node.instance_id

    @property
    def toggle_offline_url(self) -> str:
        return self.base_url + TOGGLE_OFFLINE_PATH.format(name=self.agent_name)

    @property
    def agent_information_url(self) -> str:
        return self.base_url + AGENT_INFORMATION_PATH.format(name=self.agent_name)

    async def mark_offline(self) -> None:
        """Take the agent offline. A no-op when it already is."""
        self._log.info("Marking current agent %s as offline", self.agent_name)
        try:
            online = await self.is_online()
        except JenkinsError as e:
            self._log.error(
                "Failed to check if agent %s is offline: %s", self.agent_name, e
            )
            raise
        if not online:
            self._log.info("Agent %s was already offline", self.agent_name)
            return
        await self._toggle()

    async def mark_online(self) -> None:
        """Bring the agent back online. A no-op when it already is."""
        self._log.info("Marking current agent %s as online", self.agent_name)
        try:
            online = await self.is_online()
        except JenkinsError as e:
            self._log.error(
                "Failed to check if agent %s is online: %s", self.agent_name, e
            )
            raise
        if online:
            self._log.info("Agent %s was already online", self.agent_name)
            return
        await self._toggle()

    async def is_online(self) -> bool:
        """Query the agent status; online means neither offline flag is set."""
        return (await self.get_status()).is_online

    async def get_status(self) -> AgentStatus:
        """Fetch and decode the agent status payload."""
        response = await self._request("GET", self.agent_information_url)
        if response.status_code != 200:
            raise ProtocolError(
                f"error checking if agent {self.agent_name} is online, "
                f"jenkins returned {response.status_code} status code"
            )
        try:
            return AgentStatus.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise ProtocolError(f"failed to parse agent status json output: {e}")

    async def _toggle(self) -> None:
        response = await self._request("POST", self.toggle_offline_url)
        if response.status_code != 200:
            self._log.debug("jenkins response:\n %s", response.text)
            raise ProtocolError(
                f"jenkins returned an invalid status code ({response.status_code}) "
                f"while toggling agent {self.agent_name}'s state"
            )
        self._log.info("Toggled offline state of agent %s", self.agent_name)

    async def _request(self, method: str, url: str) -> httpx.Response:
        try:
            return await self._client.request(
                method,
                url,
                auth=self._auth,
                headers={"content-type": "application/json"},
            )
        except httpx.DecodingError as e:
            raise ProtocolError(f"{method} {url} returned an undecodable response: {e}")
        except httpx.RequestError as e:
            raise TransportError(f"{method} {url} failed: {e}")
