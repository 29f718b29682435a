import pytest

from signwatch.anomaly import AnomalyDetector, DetectionConfig, build_window, haversine_km
from signwatch.core.errors import InvalidEventError
from signwatch.tests.factories import LONDON, NYC, T0, hours, km_north, login


def _detector(speed=800.0, ignore_km=80.0):
    return AnomalyDetector(DetectionConfig(speed_threshold_kph=speed, region_change_ignore_km=ignore_km))


def test_haversine_nyc_london():
    d = haversine_km(NYC.lat, NYC.lon, LONDON.lat, LONDON.lon)
    assert d == pytest.approx(5570, rel=0.01)


def test_haversine_missing_coordinate_is_zero():
    assert haversine_km(None, 0.0, 10.0, 10.0) == 0.0


def test_nyc_to_london_in_one_hour_is_flagged_and_notified():
    prev = login(1, T0, ip="1.1.1.1", region=NYC.region, lat=NYC.lat, lon=NYC.lon)
    cur = login(2, T0 + hours(1), ip="2.2.2.2", region=LONDON.region, lat=LONDON.lat, lon=LONDON.lon)

    r = _detector().evaluate(cur, build_window(cur, [prev]))

    assert r.travel.flagged
    assert r.travel.compared is prev
    assert r.travel.speed_kph == pytest.approx(5570, rel=0.01)
    assert r.notify_travel
    assert r.region.flagged and r.notify_region
    assert r.compared_event is prev


def test_max_speed_candidate_wins():
    # 06:00 -> 50 km/h, 08:00 -> 900 km/h, 09:00 -> 300 km/h (current at 10:00)
    base = T0.replace(hour=0)
    p1 = login(1, base + hours(6), ip="1.1.1.1", lat=km_north(200), lon=0.0)
    p2 = login(2, base + hours(8), ip="1.1.1.2", lat=km_north(1800), lon=0.0)
    p3 = login(3, base + hours(9), ip="1.1.1.3", lat=km_north(300), lon=0.0)
    cur = login(4, base + hours(10), ip="2.2.2.2", lat=0.0, lon=0.0)

    r = _detector(speed=800).evaluate(cur, build_window(cur, [p1, p2, p3]))

    assert r.travel.flagged
    assert r.travel.compared is p2
    assert r.travel.speed_kph == pytest.approx(900, rel=1e-6)


def test_equal_speed_resolves_to_first_in_window():
    # aynı saat, aynı mesafe (kuzey/güney); pencerede büyük id önce gelir
    north = login(2, T0, ip="1.1.1.1", lat=km_north(1000), lon=0.0)
    south = login(3, T0, ip="1.1.1.2", lat=-km_north(1000), lon=0.0)
    cur = login(4, T0 + hours(1), ip="2.2.2.2", lat=0.0, lon=0.0)

    window = build_window(cur, [north, south])
    assert [e.id for e in window] == [3, 2]

    r = _detector().evaluate(cur, window)
    assert r.travel.compared is south


def test_below_threshold_is_not_flagged():
    prev = login(1, T0, ip="1.1.1.1", lat=0.0, lon=0.0)
    cur = login(2, T0 + hours(2), ip="2.2.2.2", lat=km_north(1000), lon=0.0)
    r = _detector().evaluate(cur, build_window(cur, [prev]))
    assert not r.travel.flagged
    assert r.travel.speed_kph is None


@pytest.mark.parametrize("distance_km, notify", [(80.1, True), (79.9, False)])
def test_region_change_notification_gate(distance_km, notify):
    prev = login(1, T0, ip="1.1.1.1", region="A", lat=0.0, lon=0.0)
    cur = login(2, T0 + hours(1), ip="2.2.2.2", region="B", lat=km_north(distance_km), lon=0.0)

    r = _detector(speed=1000, ignore_km=80).evaluate(cur, build_window(cur, [prev]))

    assert r.region.flagged
    assert r.region.compared is prev
    assert r.notify_region is notify
    assert not r.travel.flagged


def test_region_uses_first_candidate_newest_first():
    older = login(1, T0, ip="1.1.1.1", region="A")
    newer = login(2, T0 + hours(1), ip="1.1.1.2", region="C")
    cur = login(3, T0 + hours(2), ip="2.2.2.2", region="B")
    r = _detector().evaluate(cur, build_window(cur, [older, newer]))
    assert r.region.compared is newer


def test_region_change_ignores_coordinates():
    prev = login(1, T0, ip="1.1.1.1", region="A")
    cur = login(2, T0 + hours(1), ip="2.2.2.2", region="B")
    r = _detector().evaluate(cur, build_window(cur, [prev]))
    assert r.region.flagged
    assert r.region.distance_km == 0.0
    assert not r.notify_region
    assert not r.travel.flagged


def test_same_ip_is_never_compared():
    prev = login(1, T0, ip="1.1.1.1", region=NYC.region, lat=NYC.lat, lon=NYC.lon)
    cur = login(2, T0 + hours(1), ip="1.1.1.1", region=LONDON.region, lat=LONDON.lat, lon=LONDON.lon)
    r = _detector().evaluate(cur, build_window(cur, [prev]))
    assert not r.anomalous


def test_non_positive_time_delta_is_skipped():
    same_time = login(1, T0, ip="1.1.1.1", lat=NYC.lat, lon=NYC.lon)
    later = login(2, T0 + hours(1), ip="1.1.1.2", lat=NYC.lat, lon=NYC.lon)
    cur = login(3, T0, ip="2.2.2.2", lat=LONDON.lat, lon=LONDON.lon)
    r = _detector().evaluate(cur, [later, same_time])
    assert not r.travel.flagged


def test_missing_coordinates_exclude_travel():
    prev = login(1, T0, ip="1.1.1.1", lat=None, lon=None)
    cur = login(2, T0 + hours(1), ip="2.2.2.2", lat=LONDON.lat, lon=LONDON.lon)
    r = _detector().evaluate(cur, build_window(cur, [prev]))
    assert not r.travel.flagged


def test_failed_login_flags_travel_but_does_not_notify():
    prev = login(1, T0, ip="1.1.1.1", region=NYC.region, lat=NYC.lat, lon=NYC.lon, status="Failure: Invalid password")
    cur = login(2, T0 + hours(1), ip="2.2.2.2", region=LONDON.region, lat=LONDON.lat, lon=LONDON.lon)
    r = _detector().evaluate(cur, build_window(cur, [prev]))
    assert r.travel.flagged
    assert not r.notify_travel
    # region yalnızca iki başarılı login arasında
    assert not r.region.flagged


def test_window_is_trailing_24_hours():
    too_old = login(1, T0 - hours(24) - hours(0.01), ip="1.1.1.1")
    edge = login(2, T0 - hours(24), ip="1.1.1.2")
    other_user = login(3, T0 - hours(1), ip="1.1.1.3", user_id="u2")
    cur = login(4, T0, ip="2.2.2.2")
    assert [e.id for e in build_window(cur, [too_old, edge, other_user])] == [2]


def test_missing_timestamp_is_an_input_error():
    cur = login(1, None)
    with pytest.raises(InvalidEventError):
        _detector().evaluate(cur, [])
