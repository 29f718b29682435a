from signwatch.anomaly import AnomalyDetector, DetectionConfig, build_window
from signwatch.anomaly.devices import DeviceInfo, DeviceKind, diff_devices
from signwatch.anomaly.incidents import AlertKind, IncidentAggregator, device_incidents, login_incidents
from signwatch.tests.factories import LONDON, NYC, T0, hours, login

DETECTOR = AnomalyDetector(DetectionConfig(speed_threshold_kph=800, region_change_ignore_km=80))


def _travel_pair(prev_ip="1.1.1.1", cur_ip="2.2.2.2", user_id="u1", base=T0):
    prev = login(1 if user_id == "u1" else 11, base, ip=prev_ip, user_id=user_id,
                 region=NYC.region, lat=NYC.lat, lon=NYC.lon)
    cur = login(2 if user_id == "u1" else 12, base + hours(1), ip=cur_ip, user_id=user_id,
                region=LONDON.region, lat=LONDON.lat, lon=LONDON.lon)
    result = DETECTOR.evaluate(cur, build_window(cur, [prev]))
    return cur, login_incidents(cur, cur.principal_name, result)


def test_travel_and_region_listed_individually():
    _, incidents = _travel_pair()
    agg = IncidentAggregator()
    agg.extend(incidents)
    plan = agg.build()
    assert [i.kind for i in plan.to_send] == [AlertKind.IMPOSSIBLE_TRAVEL, AlertKind.REGION_CHANGE]
    assert plan.log_keys() == [(2, 1, "impossible_travel"), (2, 1, "region_change")]


def test_whitelisted_subject_ip_suppresses_notification():
    _, incidents = _travel_pair(cur_ip="9.9.9.9")
    agg = IncidentAggregator(whitelist={"9.9.9.9"})
    agg.extend(incidents)
    plan = agg.build()
    assert plan.to_send == []
    assert len(plan.suppressed) == 2


def test_whitelisted_compared_ip_suppresses_notification():
    _, incidents = _travel_pair(prev_ip="9.9.9.9")
    agg = IncidentAggregator(whitelist=["9.9.9.9"])
    agg.extend(incidents)
    assert agg.build().to_send == []


def test_already_logged_pairs_are_not_renotified():
    _, incidents = _travel_pair()
    agg = IncidentAggregator()
    agg.extend(incidents)
    plan = agg.build(already_logged={(2, 1, "impossible_travel")})
    assert [i.kind for i in plan.to_send] == [AlertKind.REGION_CHANGE]
    assert len(plan.already_notified) == 1


def test_duplicate_keys_in_one_run_are_collapsed():
    _, incidents = _travel_pair()
    agg = IncidentAggregator()
    agg.extend(incidents)
    agg.extend(incidents)
    assert len(agg.build().to_send) == 2


def test_device_changes_grouped_per_user():
    app = DeviceKind.AUTHENTICATOR_APP
    delta = diff_devices(
        current={"A": DeviceInfo("Pixel", app), "B": DeviceInfo("Yubikey", DeviceKind.SECURITY_KEY)},
        known={"B": DeviceInfo("Yubikey", DeviceKind.SECURITY_KEY), "C": DeviceInfo("Old iPhone", app)},
    )
    agg = IncidentAggregator()
    agg.extend(device_incidents("u1", "alice@contoso.test", delta, T0))
    _, login_incs = _travel_pair(user_id="u2")
    agg.extend(login_incs)

    plan = agg.build()
    group = plan.device_groups["u1"]
    assert group.principal_name == "alice@contoso.test"
    assert group.added == ["Pixel"]
    assert group.removed == ["Old iPhone"]
    assert all(i.user_id == "u2" for i in plan.to_send)
    summary = plan.summary()
    assert summary["device_change_users"] == 1
    assert summary["users"] == 2
    assert summary["total"] == 4


def test_plan_order_is_deterministic():
    _, a = _travel_pair(user_id="u2")
    _, b = _travel_pair(user_id="u1")
    one, two = IncidentAggregator(), IncidentAggregator()
    one.extend(a + b)
    two.extend(b + a)
    assert one.build().log_keys() == two.build().log_keys()
