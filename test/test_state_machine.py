from __future__ import annotations

from datetime import datetime, timedelta

from hardware.protocol import decode
from hardware.state_machine import DeviceStateMachine, apply_event
from models.device_state import Axis, AxisState, DeviceState, Mode

T0 = datetime(2024, 5, 1, 9, 30, 0)


def _replay(lines, state=None):
    state = state or DeviceState()
    for offset, line in enumerate(lines):
        state = apply_event(state, decode(line, T0 + timedelta(seconds=offset)))
    return state


def test_homing_sequence_settles_both_axes():
    state = DeviceState(axis_y=AxisState(position=420), axis_z=AxisState(position=-15))
    state = _replay(
        [
            "Buscando Home Y",
            "Home Y encontrado",
            "Buscando Home Z",
            "Home Z encontrado",
            "Secuencia HOME completada",
        ],
        state,
    )
    for axis in (state.axis_y, state.axis_z):
        assert axis.position == 0
        assert axis.at_home is True
        assert axis.moving is False
    assert state.last_update == T0 + timedelta(seconds=4)


def test_home_search_marks_axis_moving():
    state = _replay(["Buscando Home Z"])
    assert state.axis_z.moving is True
    assert state.axis_y.moving is False


def test_home_complete_without_axis_applies_to_both():
    state = _replay(["Secuencia HOME completada"], DeviceState(axis_y=AxisState(position=9, moving=True)))
    assert state.axis_y == AxisState(position=0, at_home=True)
    assert state.axis_z == AxisState(position=0, at_home=True)


def test_limit_hit_stops_axis_and_flags_side():
    state = _replay(["Moviendo Eje Z", "Limite Z Max alcanzado", "Z: 20000"])
    assert state.axis_z.limit_max is True
    assert state.axis_z.limit_min is False
    assert state.axis_z.at_limit is True
    assert state.axis_z.moving is False
    assert state.axis_z.position == 20000


def test_movement_and_interruption():
    moving = _replay(["Moviendo Eje Y"])
    assert moving.axis_y.moving is True
    stopped = _replay(["Movimiento Y interrumpido"], moving)
    assert stopped.axis_y.moving is False


def test_emergency_halts_all_motion_and_reset_clears_latch():
    state = DeviceState(axis_y=AxisState(moving=True), axis_z=AxisState(moving=True))
    state = _replay(["PARO DE EMERGENCIA ACTIVADO"], state)
    assert state.emergency_stop is True
    assert not state.axis_y.moving and not state.axis_z.moving

    state = _replay(["Paro de emergencia desactivado"], state)
    assert state.emergency_stop is False


def test_status_report_overwrites_reported_fields():
    start = DeviceState(mode=Mode.AUTOMATIC, axis_y=AxisState(position=5, moving=True))
    line = (
        "STATUS:Mode=MANUAL,Emergency=0,Y=100,Z=-20,HomeY=1,HomeZ=0,"
        "LimitMinY=0,LimitMaxY=0,LimitMinZ=1,LimitMaxZ=0"
    )
    state = _replay([line], start)
    assert state.mode is Mode.MANUAL
    assert state.axis_y == AxisState(position=100, moving=True, at_home=True)
    assert state.axis_z == AxisState(position=-20, limit_min=True)


def test_status_report_is_idempotent():
    event = decode("STATUS:Mode=AUTOMATIC,Emergency=0,Y=7,Z=8,HomeY=0,HomeZ=1", T0)
    once = apply_event(DeviceState(), event)
    assert apply_event(once, event) == once


def test_status_with_emergency_halts_motion():
    state = DeviceState(axis_y=AxisState(moving=True))
    state = _replay(["STATUS:Emergency=1"], state)
    assert state.emergency_stop is True
    assert state.axis_y.moving is False


def test_status_mode_homing():
    assert _replay(["STATUS:Mode=HOME"]).mode is Mode.HOMING


def test_error_and_message_only_touch_timestamp():
    start = DeviceState(mode=Mode.MANUAL, axis_y=AxisState(position=3))
    state = _replay(["Error: Comando desconocido"], start)
    assert state.mode is Mode.MANUAL
    assert state.axis_y == start.axis_y
    assert state.last_update == T0


def test_reducer_is_deterministic_and_pure():
    lines = ["Modo Automatico", "Moviendo Eje Y", "Y: 250", "Limite Y Min alcanzado", "Z: -4"]
    start = DeviceState()
    first = _replay(lines, start)
    second = _replay(lines, start)
    assert first == second
    assert start == DeviceState()


def test_state_mapping_uses_camel_case():
    state = _replay(["Limite Y Max alcanzado"])
    data = state.to_mapping()
    assert data["mode"] == "UNKNOWN"
    assert data["axisY"]["limitMax"] is True
    assert data["axisY"]["atLimit"] is True
    assert data["emergencyStop"] is False
    assert data["lastUpdate"] == T0.isoformat()


# ---------------------------------------------------------------------------
# DeviceStateMachine
# ---------------------------------------------------------------------------

def test_machine_publishes_each_state_in_order():
    machine = DeviceStateMachine()
    seen = []
    machine.subscribe(seen.append)

    machine.apply(decode("Modo Manual", T0))
    machine.apply(decode("Y: 10", T0))

    assert [s.mode for s in seen] == [Mode.MANUAL, Mode.MANUAL]
    assert seen[-1].axis_y.position == 10
    assert machine.state is seen[-1]


def test_set_moving_notifies_only_on_change():
    machine = DeviceStateMachine()
    seen = []
    unsubscribe = machine.subscribe(seen.append)

    machine.set_moving((Axis.Y,), True)
    machine.set_moving((Axis.Y,), True)
    assert len(seen) == 1
    assert machine.state.axis_y.moving is True

    unsubscribe()
    machine.set_moving((Axis.Y,), False)
    assert len(seen) == 1


def test_failing_subscriber_does_not_block_others():
    machine = DeviceStateMachine()
    seen = []

    def _boom(_state):
        raise RuntimeError("subscriber bug")

    machine.subscribe(_boom)
    machine.subscribe(seen.append)
    machine.apply(decode("Modo Manual", T0))
    assert len(seen) == 1
