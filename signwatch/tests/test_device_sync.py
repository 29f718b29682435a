import pytest

from signwatch.anomaly.devices import DeviceKind
from signwatch.providers.graph import DeviceMethod, DirectoryUser
from signwatch.repositories.devices import list_device_changes, load_snapshot
from signwatch.services.device_sync import DeviceSyncRunner, populate_baseline
from signwatch.tests.factories import T0, FakeProvider

APP = DeviceKind.AUTHENTICATOR_APP
ALICE = DirectoryUser(id="u1", principal_name="alice@contoso.test")
BOB = DirectoryUser(id="u2", principal_name="bob@contoso.test")


def _m(device_id, kind=APP):
    return DeviceMethod(device_id=device_id, display_name=f"Device {device_id}", kind=kind)


def _runner(sessions, provider, notifier, **kw):
    return DeviceSyncRunner(sessions, provider, notifier, clock=lambda: T0, **kw)


@pytest.mark.asyncio
async def test_baseline_emits_no_changes(sessions):
    provider = FakeProvider(users=[ALICE], methods={"u1": [_m("A"), _m("pw", DeviceKind.UNRECOGNIZED)]})
    assert await populate_baseline(sessions, provider) == 1
    async with sessions() as session:
        assert set(await load_snapshot(session, "u1")) == {"A"}
        total, _ = await list_device_changes(session)
    assert total == 0


@pytest.mark.asyncio
async def test_delta_replaces_snapshot_and_notifies(sessions, notifier, sink):
    provider = FakeProvider(users=[ALICE], methods={"u1": [_m("B"), _m("C")]})
    await populate_baseline(sessions, provider)

    provider.methods["u1"] = [_m("A"), _m("B")]
    report = await _runner(sessions, provider, notifier).run()

    assert (report.added, report.removed, report.changed_users) == (1, 1, 1)
    async with sessions() as session:
        assert set(await load_snapshot(session, "u1")) == {"A", "B"}
        total, rows = await list_device_changes(session, user_id="u1")
    assert total == 2
    assert {(r.device_display_name, r.change_type) for r in rows} == {("Device A", "added"), ("Device C", "removed")}
    assert rows[0].change_time == T0

    assert sink.kinds() == ["user", "consolidated"]
    body = sink.payloads[-1].body
    assert body["device_changes"] == [{"user": "alice@contoso.test", "added": ["Device A"], "removed": ["Device C"]}]


@pytest.mark.asyncio
async def test_unchanged_ids_produce_nothing(sessions, notifier, sink):
    provider = FakeProvider(users=[ALICE], methods={"u1": [_m("A")]})
    await populate_baseline(sessions, provider)
    provider.methods["u1"] = [DeviceMethod(device_id="A", display_name="Renamed", kind=DeviceKind.SECURITY_KEY)]

    report = await _runner(sessions, provider, notifier).run()
    assert report.changed_users == 0
    assert sink.payloads == []


@pytest.mark.asyncio
async def test_provider_failure_is_not_treated_as_removal(sessions, notifier, sink):
    provider = FakeProvider(users=[ALICE, BOB], methods={"u1": [_m("A")], "u2": [_m("X")]})
    await populate_baseline(sessions, provider)

    provider.failing_users = ["u1"]
    provider.methods["u2"] = [_m("X"), _m("Y")]
    report = await _runner(sessions, provider, notifier, notify_per_user=False).run()

    assert report.skipped == 1
    assert report.changed_users == 1
    async with sessions() as session:
        assert set(await load_snapshot(session, "u1")) == {"A"}
        total, _ = await list_device_changes(session, user_id="u1")
    assert total == 0
    assert sink.kinds() == ["consolidated"]


@pytest.mark.asyncio
async def test_baseline_keeps_rows_of_unreadable_users(sessions):
    provider = FakeProvider(users=[ALICE, BOB], methods={"u1": [_m("A")], "u2": [_m("X")]})
    await populate_baseline(sessions, provider)

    provider.failing_users = ["u2"]
    provider.methods["u1"] = [_m("B")]
    assert await populate_baseline(sessions, provider) == 1
    async with sessions() as session:
        assert set(await load_snapshot(session, "u1")) == {"B"}
        assert set(await load_snapshot(session, "u2")) == {"X"}
