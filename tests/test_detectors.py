"""Tests for the interruption monitors."""

from datetime import datetime, timezone

import pytest

from conftest import make_metadata
from jenkins_spot_terminator.models.events import EventKind
from jenkins_spot_terminator.monitors.detectors import (
    DetectorError,
    InterruptionMonitor,
    ScheduledMaintenanceMonitor,
    SpotInterruptionMonitor,
    build_monitors,
)


def _scheduled_event(event_id: str, state: str = "active") -> dict:
    return {
        "NotBefore": "21 Jan 2019 09:00:43 GMT",
        "Code": "system-reboot",
        "Description": "scheduled reboot",
        "EventId": event_id,
        "NotAfter": "21 Jan 2019 09:17:23 GMT",
        "State": state,
    }


class TestSpotInterruptionMonitor:
    @pytest.mark.asyncio
    async def test_no_notice(self, metadata_state):
        async with make_metadata(metadata_state) as imds:
            result = await SpotInterruptionMonitor(imds).poll()
        assert result.interruptions == []
        assert result.cancellations == []

    @pytest.mark.asyncio
    async def test_notice(self, metadata_state):
        metadata_state.instance_action = {"action": "terminate", "time": "2017-09-18T08:22:00Z"}
        async with make_metadata(metadata_state) as imds:
            result = await SpotInterruptionMonitor(imds).poll()

        assert len(result.interruptions) == 1
        event = result.interruptions[0]
        assert event.kind == EventKind.SPOT_ITN
        assert event.event_id.startswith("spot-itn-")
        assert event.start_time == datetime(2017, 9, 18, 8, 22, tzinfo=timezone.utc)
        assert "2017-09-18T08:22:00Z" in event.description

    def test_same_notice_same_id(self):
        action = {"action": "terminate", "time": "2017-09-18T08:22:00Z"}
        assert (
            SpotInterruptionMonitor.to_event(action).event_id
            == SpotInterruptionMonitor.to_event(dict(action)).event_id
        )
        other = SpotInterruptionMonitor.to_event({"action": "stop", "time": "2017-09-18T08:22:00Z"})
        assert other.event_id != SpotInterruptionMonitor.to_event(action).event_id

    def test_bad_time(self):
        with pytest.raises(DetectorError):
            SpotInterruptionMonitor.to_event({"action": "terminate", "time": "soon"})

    def test_non_string_time(self):
        with pytest.raises(DetectorError):
            SpotInterruptionMonitor.to_event({"action": "terminate", "time": 123})

    @pytest.mark.asyncio
    async def test_malformed_notice_from_metadata(self, metadata_state):
        metadata_state.instance_action = {"action": "terminate", "time": 123}
        async with make_metadata(metadata_state) as imds:
            with pytest.raises(DetectorError):
                await SpotInterruptionMonitor(imds).poll()

    @pytest.mark.asyncio
    async def test_metadata_failure_is_detector_error(self, metadata_state):
        metadata_state.failures_remaining = 10
        async with make_metadata(metadata_state, tries=1) as imds:
            with pytest.raises(DetectorError):
                await SpotInterruptionMonitor(imds).poll()


class TestScheduledMaintenanceMonitor:
    @pytest.mark.asyncio
    async def test_splits_active_and_cancelled(self, metadata_state):
        metadata_state.scheduled_events = [
            _scheduled_event("instance-event-1"),
            _scheduled_event("instance-event-2", state="canceled"),
            _scheduled_event("instance-event-3", state="completed"),
        ]
        async with make_metadata(metadata_state) as imds:
            result = await ScheduledMaintenanceMonitor(imds).poll()

        assert [e.event_id for e in result.interruptions] == ["instance-event-1"]
        assert [e.event_id for e in result.cancellations] == [
            "instance-event-2",
            "instance-event-3",
        ]

    def test_event_fields(self):
        event = ScheduledMaintenanceMonitor.to_event(_scheduled_event("instance-event-1"))
        assert event.kind == EventKind.SCHEDULED_EVENT
        assert event.start_time == datetime(2019, 1, 21, 9, 0, 43, tzinfo=timezone.utc)
        assert event.end_time == datetime(2019, 1, 21, 9, 17, 23, tzinfo=timezone.utc)
        assert event.description.startswith("system-reboot will occur between")

    def test_unparsable_end_falls_back_to_start(self):
        raw = _scheduled_event("instance-event-1")
        raw["NotAfter"] = ""
        event = ScheduledMaintenanceMonitor.to_event(raw)
        assert event.end_time == event.start_time

    def test_missing_event_id(self):
        raw = _scheduled_event("")
        with pytest.raises(DetectorError):
            ScheduledMaintenanceMonitor.to_event(raw)

    def test_unparsable_start(self):
        raw = _scheduled_event("instance-event-1")
        raw["NotBefore"] = "tomorrow"
        with pytest.raises(DetectorError):
            ScheduledMaintenanceMonitor.to_event(raw)

    def test_null_state_is_active(self):
        raw = _scheduled_event("instance-event-1")
        raw["State"] = None
        assert ScheduledMaintenanceMonitor.to_event(raw).state == ""

    def test_non_string_start(self):
        raw = _scheduled_event("instance-event-1")
        raw["NotBefore"] = 1548061243
        with pytest.raises(DetectorError):
            ScheduledMaintenanceMonitor.to_event(raw)

    def test_non_string_end_falls_back_to_start(self):
        raw = _scheduled_event("instance-event-1")
        raw["NotAfter"] = 1548062243
        event = ScheduledMaintenanceMonitor.to_event(raw)
        assert event.end_time == event.start_time


class TestInterruptionMonitor:
    def test_poll_is_abstract(self):
        with pytest.raises(TypeError):
            InterruptionMonitor(imds=None)


class TestBuildMonitors:
    def test_one_monitor_per_kind(self):
        monitors = build_monitors(imds=None)
        assert [m.kind for m in monitors] == [EventKind.SPOT_ITN, EventKind.SCHEDULED_EVENT]
