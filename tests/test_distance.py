import httpx
import pytest

from utils.distance import (
    calculate_eta, estimate_route, format_eta, get_road_distance, haversine_distance, haversine_meters
)


def osrm_client(handler):
    return httpx.Client(transport=httpx.MockTransport(handler))


class TestHaversine:
    def test_zero_distance(self):
        assert haversine_meters(13.08, 80.27, 13.08, 80.27) == 0

    def test_one_degree_of_latitude(self):
        assert haversine_meters(0, 0, 1, 0) == pytest.approx(111195, rel=1e-3)

    def test_chennai_to_bangalore(self):
        assert haversine_distance(13.0827, 80.2707, 12.9716, 77.5946) == pytest.approx(290, rel=0.02)


class TestRouting:
    def test_road_distance_is_corrected(self):
        def handler(request):
            assert "/route/v1/driving/80.27,13.08;77.59,12.97" in str(request.url)
            return httpx.Response(200, json={"code": "Ok", "routes": [{"distance": 10000, "duration": 600}]})

        distance, minutes = get_road_distance(13.08, 80.27, 12.97, 77.59, client=osrm_client(handler))
        assert distance == pytest.approx(11.0)
        assert minutes == 12

    def test_routing_failure_returns_none(self):
        def handler(request):
            return httpx.Response(200, json={"code": "NoRoute", "routes": []})

        assert get_road_distance(0, 0, 1, 1, client=osrm_client(handler)) == (None, None)

    def test_estimate_falls_back_to_straight_line(self):
        def handler(request):
            raise httpx.ConnectError("offline", request=request)

        distance, minutes, is_road = estimate_route(0, 0, 1, 0, client=osrm_client(handler))
        assert not is_road
        assert distance == pytest.approx(111.2, rel=1e-3)
        assert minutes == calculate_eta(distance)

    @pytest.mark.parametrize("minutes, text", [(45, "45 min"), (60, "1 hr"), (135, "2 hr 15 min")])
    def test_format_eta(self, minutes, text):
        assert format_eta(minutes) == text
