import pytest
from datetime import datetime
from driver_assist.config import config
from driver_assist.detection import (
    calculate_distance,
    calculate_speed_kph,
    compute_acceleration,
    detect_events,
)

class TestAccelerationComputation:
    """Test acceleration computation function."""

    def test_normal_acceleration(self):
        """Test normal acceleration calculation."""
        prev_ts = datetime(2020, 1, 1, 0, 0, 0)
        now = datetime(2020, 1, 1, 0, 0, 1)
        accel = compute_acceleration(50.0, prev_ts, 60.0, now)
        assert accel == 10.0

    def test_negative_acceleration(self):
        """Test deceleration calculation."""
        prev_ts = datetime(2020, 1, 1, 0, 0, 0)
        now = datetime(2020, 1, 1, 0, 0, 1)
        accel = compute_acceleration(60.0, prev_ts, 50.0, now)
        assert accel == -10.0

    def test_zero_delta_time(self):
        """Test handling of zero time delta."""
        ts = datetime(2020, 1, 1, 0, 0, 0)
        accel = compute_acceleration(50.0, ts, 60.0, ts)
        assert accel == 0.0

    def test_negative_delta_time(self):
        """Test handling of negative time delta."""
        prev_ts = datetime(2020, 1, 1, 0, 0, 1)
        now = datetime(2020, 1, 1, 0, 0, 0)
        accel = compute_acceleration(50.0, prev_ts, 60.0, now)
        assert accel == 0.0

class TestDistance:
    """Haversine distance and derived speed."""

    def test_same_point(self):
        assert calculate_distance(14.5995, 120.9842, 14.5995, 120.9842) == 0.0

    def test_one_degree_of_latitude(self):
        assert calculate_distance(0.0, 0.0, 1.0, 0.0) == pytest.approx(111.19, abs=0.01)

    def test_speed_from_points(self):
        t1 = datetime(2020, 1, 1, 0, 0, 0)
        t2 = datetime(2020, 1, 1, 1, 0, 0)
        assert calculate_speed_kph(0.0, 0.0, t1, 1.0, 0.0, t2) == pytest.approx(111.19, abs=0.01)

    def test_speed_without_elapsed_time(self):
        ts = datetime(2020, 1, 1, 0, 0, 0)
        assert calculate_speed_kph(0.0, 0.0, ts, 1.0, 0.0, ts) == 0.0

class TestEventDetection:
    """Test event detection logic."""

    def test_speed_limit_violation(self):
        """Speed above the limit is reported."""
        events = detect_events(config.overspeed_kph + 10, 0.0)

        assert len(events) == 1
        assert events[0]['event_type'] == 'speed_limit_violation'

    def test_sudden_braking(self):
        events = detect_events(50.0, config.harsh_brake_kph_s - 5)

        assert [e['event_type'] for e in events] == ['sudden_braking']

    def test_sudden_acceleration(self):
        events = detect_events(50.0, config.sudden_accel_kph_s + 5)

        assert [e['event_type'] for e in events] == ['sudden_acceleration']

    def test_multiple_events_same_point(self):
        """Test detection of multiple events in same telemetry point."""
        events = detect_events(config.overspeed_kph + 10, config.harsh_brake_kph_s - 5, 1.0, 2.0)

        event_types = [e['event_type'] for e in events]
        assert event_types == ['speed_limit_violation', 'sudden_braking']
        assert all(e['latitude'] == 1.0 and e['longitude'] == 2.0 for e in events)

    def test_no_events_normal_driving(self):
        """Test that normal driving doesn't trigger events."""
        assert detect_events(50.0, 2.0) == []

    def test_thresholds_follow_runtime_config(self, monkeypatch):
        monkeypatch.setattr(config, "overspeed_kph", 30.0)

        assert [e['event_type'] for e in detect_events(40.0, 0.0)] == ['speed_limit_violation']
