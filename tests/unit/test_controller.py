"""Session lifecycle, STOP path and auto-stop through the controller."""

import asyncio
import logging

import pytest

from cablectrl.autostop import AutoStopGate
from cablectrl.controller import SessionController, StopOutcome
from cablectrl.core import COMMAND_CHAR_UUID, MONITOR_CHAR_UUID, NOTIFY_CHAR_UUIDS, REP_NOTIFY_CHAR_UUID
from cablectrl.errors import DisconnectedError, SessionError, ValidationError
from cablectrl.events import (
    AutoStopTriggered,
    Disconnected,
    RepCompleted,
    SampleReceived,
    SessionCompleted,
)
from cablectrl.modes import COLOR_PRESETS, EchoLevel, ProgramMode
from cablectrl.protocol import INIT_COMMAND_BYTES, INIT_PRESET_BYTES
from cablectrl.session import EchoRequest, FixedProgram, JustLiftProgram, SessionState
from cablectrl.transport import GattTransport
from fakes import monitor_payload, rep_payload, wait_for_event

STOP_BYTES = INIT_COMMAND_BYTES


async def _connected(client_factory, **kwargs):
    transport = GattTransport("AA:BB:CC:DD:EE:FF", client_factory=client_factory, operation_timeout=0.5)
    controller = SessionController(transport, **kwargs)
    await controller.connect()
    return controller, client_factory.client


def _do_reps(client, start, count):
    for i in range(start + 1, start + count + 1):
        client.notify(REP_NOTIFY_CHAR_UUID, rep_payload(top=i, complete=i - 1))
        client.notify(REP_NOTIFY_CHAR_UUID, rep_payload(top=i, complete=i))


@pytest.mark.asyncio
async def test_connect_sends_init_sequence(client_factory):
    controller, client = await _connected(client_factory)

    assert controller.is_connected
    assert client.written(COMMAND_CHAR_UUID) == [INIT_COMMAND_BYTES, INIT_PRESET_BYTES]
    assert client.start_notify_calls == list(NOTIFY_CHAR_UUIDS)

    await controller.disconnect()
    assert not controller.is_connected


@pytest.mark.asyncio
async def test_fixed_program_completes_once(client_factory):
    controller, client = await _connected(client_factory)
    with controller.subscribe() as events:
        session = await controller.start_program(FixedProgram(ProgramMode.OLD_SCHOOL, reps=5, per_cable_kg=10.0))
        assert session.state is SessionState.WARMUP
        assert controller.transport.active_pollers == ["monitor", "property"]

        program_frame = client.written(COMMAND_CHAR_UUID)[-1]
        assert len(program_frame) == 96
        assert program_frame[4] == 8

        client.notify(REP_NOTIFY_CHAR_UUID, rep_payload(0, 0))
        _do_reps(client, 0, 3)
        assert session.state is SessionState.WORKING
        _do_reps(client, 3, 5)

        received = events.drain()

    reps = [e for e in received if isinstance(e, RepCompleted)]
    completed = [e for e in received if isinstance(e, SessionCompleted)]
    assert len(reps) == 8
    assert len(completed) == 1
    assert completed[0].working_reps == 5
    assert completed[0].reason == "target reached"
    assert controller.session is None
    assert controller.transport.active_pollers == []

    record = controller.history[0]
    assert record.mode_name == "Old School"
    assert record.weight_kg == 10.0
    assert record.reps == 5

    await controller.disconnect()


@pytest.mark.asyncio
async def test_stop_at_top_sends_stop(client_factory):
    controller, client = await _connected(client_factory, stop_at_top=True)
    await controller.start_program(FixedProgram(ProgramMode.PUMP, reps=2, per_cable_kg=5.0))

    client.notify(REP_NOTIFY_CHAR_UUID, rep_payload(0, 0))
    _do_reps(client, 0, 4)
    client.notify(REP_NOTIFY_CHAR_UUID, rep_payload(top=5, complete=4))
    await controller.wait_idle()

    assert client.written(COMMAND_CHAR_UUID)[-1] == STOP_BYTES
    assert controller.session is None
    assert controller.history[0].reps == 2

    await controller.disconnect()


@pytest.mark.asyncio
async def test_validation_happens_before_io(client_factory):
    controller, client = await _connected(client_factory)
    writes_before = len(client.writes)

    with pytest.raises(ValidationError):
        await controller.start_program(FixedProgram(ProgramMode.PUMP, reps=8, per_cable_kg=150.0))
    with pytest.raises(ValidationError):
        await controller.start_echo(EchoRequest(EchoLevel.HARD, eccentric_pct=200))

    assert len(client.writes) == writes_before
    assert controller.session is None

    await controller.disconnect()


@pytest.mark.asyncio
async def test_second_set_rejected_while_active(client_factory):
    controller, client = await _connected(client_factory)
    await controller.start_echo(EchoRequest(EchoLevel.HARDEST, target_reps=8))

    with pytest.raises(SessionError):
        await controller.start_program(FixedProgram(ProgramMode.TUT, reps=8, per_cable_kg=10.0))

    assert await controller.stop() is StopOutcome.STOPPED
    await controller.disconnect()


@pytest.mark.asyncio
async def test_start_requires_connection():
    controller = SessionController()
    with pytest.raises(DisconnectedError):
        await controller.start_program(FixedProgram(ProgramMode.TUT, reps=8, per_cable_kg=10.0))


@pytest.mark.asyncio
async def test_stop_retries_transient_failures(client_factory):
    controller, client = await _connected(client_factory)
    await controller.start_program(JustLiftProgram(ProgramMode.OLD_SCHOOL, per_cable_kg=20.0))
    client.write_failures = 2

    outcome = await controller.stop()

    assert outcome is StopOutcome.STOPPED
    assert client.written(COMMAND_CHAR_UUID)[-1] == STOP_BYTES
    assert controller.is_connected
    assert controller.session is None
    assert controller.history[0].reason == "stopped by user"
    assert not controller.transport.polling_paused

    await controller.disconnect()


@pytest.mark.asyncio
async def test_stop_forces_disconnect_when_all_attempts_fail(client_factory):
    controller, client = await _connected(client_factory)
    await controller.start_program(JustLiftProgram(ProgramMode.OLD_SCHOOL, per_cable_kg=20.0))
    client.write_failures = 3

    with controller.subscribe() as events:
        outcome = await controller.stop()
        received = events.drain()

    assert outcome is StopOutcome.FORCED_DISCONNECT
    assert not controller.is_connected
    assert STOP_BYTES not in client.written()[2:]
    assert controller.history[0].reason == "stopped by user, link dropped"
    assert Disconnected(expected=True) in received
    assert sum(isinstance(e, SessionCompleted) for e in received) == 1


@pytest.mark.asyncio
async def test_stop_when_not_connected():
    controller = SessionController()
    assert await controller.stop() is StopOutcome.NOT_CONNECTED


@pytest.mark.asyncio
async def test_link_loss_archives_session(client_factory):
    controller, client = await _connected(client_factory)
    await controller.start_echo(EchoRequest(EchoLevel.EPIC, just_lift=True))

    with controller.subscribe() as events:
        client.drop()
        received = events.drain()

    assert not controller.is_connected
    assert controller.session is None
    assert controller.history[0].reason == "disconnected"
    assert controller.history[0].mode_name == "Just Lift (Echo Epic)"
    assert Disconnected(expected=False) in received

    with pytest.raises(DisconnectedError):
        await controller.start_echo(EchoRequest(EchoLevel.EPIC))


@pytest.mark.asyncio
async def test_failed_start_leaves_controller_idle(client_factory):
    controller, client = await _connected(client_factory)
    client.write_failures = 1

    with pytest.raises(SessionError, match="Failed to start Pump"):
        await controller.start_program(FixedProgram(ProgramMode.PUMP, reps=8, per_cable_kg=10.0))

    assert controller.session is None
    assert controller.history == []
    assert controller.transport.active_pollers == []
    assert controller.get_status()["state"] == "idle"

    # The link is still usable for the next set
    await controller.start_program(FixedProgram(ProgramMode.PUMP, reps=8, per_cable_kg=10.0))
    assert controller.session is not None

    await controller.stop()
    await controller.disconnect()


@pytest.mark.asyncio
async def test_link_loss_during_start_archives_nothing(client_factory):
    controller, client = await _connected(client_factory)
    client.write_delay = 0.1

    with controller.subscribe() as events:
        task = asyncio.create_task(
            controller.start_program(FixedProgram(ProgramMode.PUMP, reps=8, per_cable_kg=10.0))
        )
        await asyncio.sleep(0.03)
        with pytest.raises(SessionError, match="already running"):
            await controller.start_program(FixedProgram(ProgramMode.TUT, reps=8, per_cable_kg=10.0))
        client.drop()

        with pytest.raises(SessionError):
            await task
        received = events.drain()

    assert controller.session is None
    assert controller.history == []
    assert not any(isinstance(e, SessionCompleted) for e in received)
    assert Disconnected(expected=False) in received


@pytest.mark.asyncio
async def test_malformed_monitor_payload_is_dropped(client_factory, caplog):
    controller, client = await _connected(client_factory)
    client.reads[MONITOR_CHAR_UUID] = b"\x01\x02\x03"

    with controller.subscribe() as events:
        with caplog.at_level(logging.WARNING, logger="cablectrl.controller"):
            await controller.start_program(FixedProgram(ProgramMode.PUMP, reps=8, per_cable_kg=10.0))
            await asyncio.sleep(0.25)

        assert not any(isinstance(e, SampleReceived) for e in events.drain())
        assert "Dropped monitor payload" in caplog.text
        assert controller.transport.active_pollers == ["monitor", "property"]

        client.reads[MONITOR_CHAR_UUID] = monitor_payload(pos_a=321)
        event = await wait_for_event(events, SampleReceived, predicate=lambda e: e.sample.pos_a == 321)

    assert event.sample.pos_a == 321
    assert controller.get_status()["pos_a"] == 321

    await controller.stop()
    await controller.disconnect()


@pytest.mark.asyncio
async def test_log_listeners_survive_set_completion(client_factory, caplog):
    controller, client = await _connected(client_factory)
    await controller.start_program(FixedProgram(ProgramMode.OLD_SCHOOL, reps=1, per_cable_kg=5.0))
    client.notify(REP_NOTIFY_CHAR_UUID, rep_payload(0, 0))
    _do_reps(client, 0, 4)
    assert controller.session is None

    other_uuid = NOTIFY_CHAR_UUIDS[0]
    with controller.subscribe() as events:
        with caplog.at_level(logging.DEBUG, logger="cablectrl.controller"):
            client.notify(other_uuid, b"\xab\xcd")
            client.notify(REP_NOTIFY_CHAR_UUID, rep_payload(top=6, complete=6))

        assert events.drain() == []

    assert f"Notification {other_uuid}: ab cd" in caplog.text
    assert f"Notification {REP_NOTIFY_CHAR_UUID}" in caplog.text
    assert len(controller.history) == 1

    await controller.disconnect()


@pytest.mark.asyncio
async def test_just_lift_auto_stop(client_factory):
    controller, client = await _connected(client_factory, gate=AutoStopGate(dwell=0.0))
    with controller.subscribe() as events:
        await controller.start_program(JustLiftProgram(ProgramMode.TUT, per_cable_kg=15.0))
        client.notify(REP_NOTIFY_CHAR_UUID, rep_payload(0, 0))

        client.reads[MONITOR_CHAR_UUID] = monitor_payload(pos_a=1000, pos_b=1000)
        await wait_for_event(events, SampleReceived, predicate=lambda e: e.sample.pos_a == 1000)
        client.notify(REP_NOTIFY_CHAR_UUID, rep_payload(top=1, complete=0))

        client.reads[MONITOR_CHAR_UUID] = monitor_payload(pos_a=0, pos_b=0)
        await wait_for_event(events, SampleReceived, predicate=lambda e: e.sample.pos_a == 0)
        client.notify(REP_NOTIFY_CHAR_UUID, rep_payload(top=1, complete=1))

        await wait_for_event(events, AutoStopTriggered)
        completed = await wait_for_event(events, SessionCompleted)

    await controller.wait_idle()
    assert completed.reason == "auto-stop"
    assert client.written(COMMAND_CHAR_UUID)[-1] == STOP_BYTES
    assert controller.session is None

    await controller.disconnect()


@pytest.mark.asyncio
async def test_fixed_program_ignores_auto_stop(client_factory):
    controller, client = await _connected(client_factory, gate=AutoStopGate(dwell=0.0))
    await controller.start_program(FixedProgram(ProgramMode.TUT, reps=10, per_cable_kg=15.0))
    client.notify(REP_NOTIFY_CHAR_UUID, rep_payload(0, 0))
    _do_reps(client, 0, 2)

    await asyncio.sleep(0.3)

    assert controller.session is not None
    assert controller.auto_stop_progress == 0.0

    await controller.stop()
    await controller.disconnect()


@pytest.mark.asyncio
async def test_color_preset(client_factory):
    controller, client = await _connected(client_factory)

    await controller.set_color_preset("teal")
    frame = client.written(COMMAND_CHAR_UUID)[-1]
    teal = COLOR_PRESETS["teal"]
    assert len(frame) == 34
    assert frame[0x10:0x13] == bytes(teal.colors[0])

    with pytest.raises(ValidationError):
        await controller.set_color_preset("chartreuse")

    await controller.disconnect()


@pytest.mark.asyncio
async def test_status_snapshot(client_factory):
    controller, client = await _connected(client_factory)
    client.reads[MONITOR_CHAR_UUID] = monitor_payload(pos_a=300, pos_b=310, load_a=1250, load_b=1300)

    with controller.subscribe() as events:
        await controller.start_program(FixedProgram(ProgramMode.PUMP, reps=10, per_cable_kg=12.0))
        await wait_for_event(events, SampleReceived)

    status = controller.get_status()
    assert status["connected"] is True
    assert status["state"] == "warmup"
    assert status["mode"] == "Pump"
    assert status["target_reps"] == 10
    assert status["load_a"] == pytest.approx(12.5)
    assert status["pos_b"] == 310

    await controller.stop()
    await controller.disconnect()
