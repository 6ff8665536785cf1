"""Fake Jenkins master and instance metadata endpoints for the test suite."""

import secrets
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import httpx
import pytest
from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from jenkins_spot_terminator.jenkins.client import JenkinsMaster
from jenkins_spot_terminator.metadata.service import InstanceMetadataService
from jenkins_spot_terminator.models.events import EventKind, InterruptionEvent
from jenkins_spot_terminator.models.node import NodeMetadata

JENKINS_URL = "http://jenkins.test"
METADATA_URL = "http://169.254.169.254"
API_USER = "admin"
API_TOKEN = "s3cr3t"
INSTANCE_ID = "i-0123456789abcdef0"


class FakeJenkinsState:
    """What the fake master knows about its agents."""

    def __init__(self, offline: bool = False):
        self.offline = offline
        self.toggle_calls = 0
        self.status_calls = 0
        self.status_code = 200
        self.toggle_status_code = 200
        self.status_body: Optional[str] = None


def create_fake_jenkins(state: FakeJenkinsState) -> FastAPI:
    app = FastAPI()
    security = HTTPBasic()

    def authenticate(credentials: HTTPBasicCredentials = Depends(security)) -> None:
        if not (
            secrets.compare_digest(credentials.username, API_USER)
            and secrets.compare_digest(credentials.password, API_TOKEN)
        ):
            raise HTTPException(401, "Invalid credentials")

    @app.get("/computer/{name}/api/json", dependencies=[Depends(authenticate)])
    def agent_information(name: str):
        state.status_calls += 1
        if state.status_body is not None:
            return Response(state.status_body, status_code=state.status_code)
        if state.status_code != 200:
            raise HTTPException(state.status_code, "Agent lookup failed")
        return {
            "_class": "hudson.slaves.SlaveComputer",
            "displayName": name,
            "description": "spot build agent",
            "numExecutors": 2,
            "offline": state.offline,
            "offlineCauseReason": "",
            "temporarilyOffline": state.offline,
        }

    @app.post("/computer/{name}/toggleOffline", dependencies=[Depends(authenticate)])
    def toggle_offline(name: str):
        state.toggle_calls += 1
        if state.toggle_status_code != 200:
            raise HTTPException(state.toggle_status_code, "Toggle failed")
        state.offline = not state.offline
        return Response(status_code=200)

    return app


class FakeMetadataState:
    """What the fake IMDS serves."""

    def __init__(self):
        self.instance_action: Optional[dict] = None
        self.scheduled_events: List[dict] = []
        self.token_enabled = True
        self.issued_token = "imds-token"
        self.metadata = {
            "instance-id": INSTANCE_ID,
            "instance-type": "c5.xlarge",
            "instance-life-cycle": "spot",
            "placement/availability-zone": "eu-central-1a",
            "local-hostname": "ip-10-0-0-1.eu-central-1.compute.internal",
            "local-ipv4": "10.0.0.1",
        }
        self.failures_remaining = 0
        self.token_requests = 0
        self.requests: List[dict] = []


def create_fake_metadata(state: FakeMetadataState) -> FastAPI:
    app = FastAPI()

    @app.put("/latest/api/token")
    def token():
        state.token_requests += 1
        if not state.token_enabled:
            raise HTTPException(404, "Not Found")
        return Response(state.issued_token, media_type="text/plain")

    @app.get("/latest/meta-data/{path:path}")
    def read_meta_data(path: str, request: Request):
        token = request.headers.get("x-aws-ec2-metadata-token")
        state.requests.append({"path": path, "token": token})
        if state.failures_remaining > 0:
            state.failures_remaining -= 1
            raise HTTPException(503, "Service Unavailable")
        if state.token_enabled and token != state.issued_token:
            raise HTTPException(401, "Unauthorized")
        if path == "spot/instance-action":
            if state.instance_action is None:
                raise HTTPException(404, "Not Found")
            return state.instance_action
        if path == "events/maintenance/scheduled":
            return state.scheduled_events
        if path not in state.metadata:
            raise HTTPException(404, "Not Found")
        return Response(state.metadata[path], media_type="text/plain")

    return app


def make_node() -> NodeMetadata:
    return NodeMetadata(instance_id=INSTANCE_ID, instance_type="c5.xlarge")


def make_jenkins(state: FakeJenkinsState, token: str = API_TOKEN) -> JenkinsMaster:
    client = httpx.AsyncClient(transport=httpx.ASGITransport(app=create_fake_jenkins(state)))
    return JenkinsMaster(JENKINS_URL, API_USER, token, make_node(), client=client)


def make_metadata(state: FakeMetadataState, tries: int = 3) -> InstanceMetadataService:
    client = httpx.AsyncClient(transport=httpx.ASGITransport(app=create_fake_metadata(state)))
    return InstanceMetadataService(
        METADATA_URL, tries=tries, retry_delay_seconds=0, client=client
    )


def make_event(
    event_id: str,
    kind: EventKind = EventKind.SPOT_ITN,
    starts_in: timedelta = timedelta(minutes=2),
) -> InterruptionEvent:
    return InterruptionEvent(
        event_id=event_id,
        kind=kind,
        description=f"{kind.value} test event",
        start_time=datetime.now(timezone.utc) + starts_in,
    )


@pytest.fixture
def jenkins_state() -> FakeJenkinsState:
    return FakeJenkinsState()


@pytest.fixture
def metadata_state() -> FakeMetadataState:
    return FakeMetadataState()
