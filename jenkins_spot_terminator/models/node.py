"""Node identity and the Jenkins view of the agent running on it."""

from pydantic import BaseModel, ConfigDict, Field


class NodeMetadata(BaseModel):
    """Static descriptor of the current machine. Fetched once at startup."""

    model_config = ConfigDict(frozen=True)

    instance_id: str                        # Used as the agent name in Jenkins
    instance_type: str = ""
    instance_life_cycle: str = ""           # "spot" or "on-demand"
    availability_zone: str = ""
    region: str = ""
    local_hostname: str = ""
    local_ip: str = ""
    public_hostname: str = ""
    public_ip: str = ""


class AgentStatus(BaseModel):
    """Subset of Jenkins' /computer/<name>/api/json payload."""

    model_config = ConfigDict(populate_by_name=True)

    offline: bool
    temporarily_offline: bool = Field(alias="temporarilyOffline")
    offline_cause_reason: str = Field(default="", alias="offlineCauseReason")
    num_executors: int = Field(default=0, alias="numExecutors")
    display_name: str = Field(default="", alias="displayName")
    description: str = ""

    @property
    def is_online(self) -> bool:
        return not self.offline and not self.temporarily_offline
