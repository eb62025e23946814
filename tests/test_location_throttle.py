import math

from services.location_throttle import (
    LocationReading, LocationThrottler, SOURCE_IP, should_admit
)

BASE_LAT, BASE_LNG = 12.9716, 77.5946
# ~11 m of latitude
STEP = 0.0001


def north(meters):
    return BASE_LAT + math.degrees(meters / 6371000.0)


def reading(lat=BASE_LAT, lng=BASE_LNG, t=0, **kwargs):
    return LocationReading(lat=lat, lng=lng, timestamp=t, **kwargs)


class TestShouldAdmit:
    def test_first_reading_is_admitted(self):
        assert should_admit(reading(), None)

    def test_rejects_within_interval_even_when_far(self):
        last = reading(t=0)
        assert not should_admit(reading(lat=BASE_LAT + 1, t=4999), last)

    def test_admits_after_interval_when_moved(self):
        last = reading(t=0)
        assert should_admit(reading(lat=BASE_LAT + STEP, t=5000), last)

    def test_rejects_small_gps_move(self):
        last = reading(t=0)
        assert not should_admit(reading(lat=BASE_LAT + STEP / 2, t=60000), last)

    def test_ip_readings_need_a_larger_move(self):
        last = reading(t=0)
        assert not should_admit(reading(lat=BASE_LAT + 0.0005, t=60000, source=SOURCE_IP), last)
        assert should_admit(reading(lat=BASE_LAT + 0.002, t=60000, source=SOURCE_IP), last)

    def test_forced_reading_skips_every_check(self):
        last = reading(t=0)
        assert should_admit(reading(t=1, force_update=True), last)


class TestLocationThrottler:
    def test_remembers_only_admitted_readings(self):
        throttler = LocationThrottler()
        first = reading(t=0)
        assert throttler.admit("v1", first)
        assert not throttler.admit("v1", reading(lat=BASE_LAT + 1, t=1000))
        assert throttler.last_admitted("v1") is first

        moved = reading(lat=BASE_LAT + STEP, t=6000)
        assert throttler.admit("v1", moved)
        assert throttler.last_admitted("v1") is moved

    def test_vehicles_are_independent(self):
        throttler = LocationThrottler()
        assert throttler.admit("v1", reading(t=0))
        assert throttler.admit("v2", reading(t=1))

    def test_reset(self):
        throttler = LocationThrottler()
        throttler.admit("v1", reading(t=0))
        throttler.admit("v2", reading(t=0))

        throttler.reset("v1")
        assert throttler.last_admitted("v1") is None
        assert throttler.last_admitted("v2") is not None

        throttler.reset()
        assert throttler.last_admitted("v2") is None


class TestAdmissionSequences:
    def test_time_gate_over_a_sequence(self):
        throttler = LocationThrottler()
        admitted = [
            t for i, t in enumerate([0, 1000, 4000, 6000])
            if throttler.admit("v1", reading(lat=north(20 * (i + 1)), t=t))
        ]
        assert admitted == [0, 6000]

    def test_gps_distance_gate(self):
        last = reading(t=0)
        assert not should_admit(reading(lat=north(3), t=6000), last)
        assert should_admit(reading(lat=north(15), t=6000), last)

    def test_ip_distance_gate(self):
        last = reading(t=0, source=SOURCE_IP)
        assert not should_admit(reading(lat=north(99), t=6000, source=SOURCE_IP), last)
        assert should_admit(reading(lat=north(101), t=6000, source=SOURCE_IP), last)

    def test_force_with_zero_displacement_and_time(self):
        last = reading(t=0)
        assert should_admit(reading(t=0, force_update=True), last)
