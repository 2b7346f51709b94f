import re
import threading
import pytest
from unittest.mock import MagicMock
from fizhub.core import state_machine as sm
from fizhub.core.errors import DuplicateUID, StaleSession, ValidationFailure, WrongPhase
from fizhub.core.state_machine import BondingStateMachine, generate_bond_id

HEX16 = re.compile(r"^[0-9a-f]{16}$")


@pytest.fixture
def machine():
    m = BondingStateMachine()
    m.start()
    return m


def test_start_only_from_initial():
    m = BondingStateMachine()
    seen = []
    m.subscribe(sm.COLLECTING_TAPS, seen.append)
    assert m.phase == sm.INITIAL

    m.start()
    m.start()

    assert m.phase == sm.COLLECTING_TAPS
    assert seen == [sm.COLLECTING_TAPS]


def test_tap_before_start_is_wrong_phase():
    m = BondingStateMachine()
    with pytest.raises(WrongPhase):
        m.tap_received("u1")
    assert m.collected_uids() == []


def test_collects_until_third_distinct_uid(machine):
    fired = []
    machine.subscribe(sm.VALIDATING, fired.append)

    machine.tap_received("u1")
    assert machine.phase == sm.COLLECTING_TAPS
    machine.tap_received("u2")
    assert machine.phase == sm.COLLECTING_TAPS
    machine.tap_received("u3")

    assert machine.phase == sm.VALIDATING
    assert machine.collected_uids() == ["u1", "u2", "u3"]
    assert fired == [sm.VALIDATING]


def test_duplicate_uid_leaves_collection_unchanged(machine):
    machine.tap_received("abc123")
    with pytest.raises(DuplicateUID) as exc:
        machine.tap_received("abc123")
    assert exc.value.uid == "abc123"
    assert machine.collected_uids() == ["abc123"]
    assert machine.phase == sm.COLLECTING_TAPS


def test_fourth_tap_is_wrong_phase(machine):
    for uid in ("u1", "u2", "u3"):
        machine.tap_received(uid)
    with pytest.raises(WrongPhase) as exc:
        machine.tap_received("u4")
    assert exc.value.expected == sm.COLLECTING_TAPS
    assert exc.value.actual == sm.VALIDATING
    assert len(machine.collected_uids()) == 3


def test_full_bonding_scenario_and_reset(machine):
    for uid in ("u1", "u2", "u3"):
        machine.tap_received(uid)
    assert machine.phase == sm.VALIDATING

    machine.validation_succeeded(["acct1"])
    assert machine.phase == sm.RECORDING
    assert HEX16.match(machine.bond_id)
    assert machine.validated_accounts() == ["acct1"]

    machine.recording_started()
    assert machine.phase == sm.RECORDING

    machine.recording_completed()
    assert machine.phase == sm.COMPLETE

    machine.reset()
    assert machine.phase == sm.COLLECTING_TAPS
    assert machine.collected_uids() == []
    assert machine.validated_accounts() == []
    assert machine.bond_id == ""


@pytest.mark.parametrize("event,data", [
    (sm.EVENT_UID_VALIDATED, ["acct"]),
    (sm.EVENT_RECORDING_STARTED, None),
    (sm.EVENT_RECORDING_COMPLETE, None),
])
def test_events_outside_their_phase_are_rejected(machine, event, data):
    with pytest.raises(WrongPhase):
        machine.handle_event(event, data)
    assert machine.phase == sm.COLLECTING_TAPS


def test_unknown_event_raises_value_error(machine):
    with pytest.raises(ValueError):
        machine.handle_event("bogus")


def test_bond_id_set_once_and_immutable_until_reset(machine):
    for uid in ("u1", "u2", "u3"):
        machine.tap_received(uid)
    machine.validation_succeeded(["a"])
    first = machine.bond_id

    with pytest.raises(WrongPhase):
        machine.validation_succeeded(["b"])
    machine.recording_completed()

    assert machine.bond_id == first


def test_error_event_notifies_observers_without_changing_phase(machine):
    errors = []
    machine.subscribe_error(errors.append)
    for uid in ("u1", "u2", "u3"):
        machine.tap_received(uid)

    machine.report_error(ValidationFailure("rejected"))

    assert machine.phase == sm.VALIDATING
    assert len(errors) == 1 and isinstance(errors[0], ValidationFailure)


def test_observers_run_in_registration_order_with_new_phase(machine):
    order = []
    machine.subscribe(sm.VALIDATING, lambda p: order.append(("first", p)))
    machine.subscribe(sm.VALIDATING, lambda p: order.append(("second", p)))
    machine.subscribe(sm.RECORDING, lambda p: order.append(("recording", p)))

    for uid in ("u1", "u2", "u3"):
        machine.tap_received(uid)

    assert order == [("first", sm.VALIDATING), ("second", sm.VALIDATING)]


def test_observer_may_reenter_machine(machine):
    # Observers run after the lock is released, so posting the next event from
    # inside one must not deadlock.
    done = threading.Event()

    def on_validating(phase):
        assert machine.collected_uids() == ["u1", "u2", "u3"]
        machine.validation_succeeded(["acct"])
        done.set()

    machine.subscribe(sm.VALIDATING, on_validating)
    worker = threading.Thread(target=lambda: [machine.tap_received(u) for u in ("u1", "u2", "u3")])
    worker.start()
    worker.join(timeout=5)

    assert done.is_set()
    assert machine.phase == sm.RECORDING


def test_failing_observer_does_not_block_others(machine):
    second = MagicMock()
    machine.subscribe(sm.VALIDATING, MagicMock(side_effect=RuntimeError("boom")))
    machine.subscribe(sm.VALIDATING, second)

    for uid in ("u1", "u2", "u3"):
        machine.tap_received(uid)

    second.assert_called_once_with(sm.VALIDATING)
    assert machine.phase == sm.VALIDATING


def test_subscribe_unknown_phase_rejected(machine):
    with pytest.raises(ValueError):
        machine.subscribe("Nope", lambda p: None)


def test_concurrent_taps_never_exceed_three(machine):
    barrier = threading.Barrier(8)
    results = []

    def tap(i):
        barrier.wait()
        try:
            machine.tap_received(f"uid-{i}")
            results.append("ok")
        except WrongPhase:
            results.append("late")

    threads = [threading.Thread(target=tap, args=(i,)) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=5)

    assert results.count("ok") == 3
    assert len(machine.collected_uids()) == 3
    assert machine.phase == sm.VALIDATING


def test_formatted_uids_render_tap_urls(machine):
    machine.tap_received("04a1b2")
    assert machine.formatted_uids() == ["https://nfc.cursive.team/tap?uid=04a1b2"]


def test_snapshot_is_a_copy(machine):
    machine.tap_received("u1")
    snap = machine.snapshot()
    snap.collected_uids.append("mutated")
    assert machine.collected_uids() == ["u1"]
    assert snap.phase == sm.COLLECTING_TAPS


def test_bond_id_is_16_hex_chars():
    assert HEX16.match(generate_bond_id(["u1", "u2", "u3"]))


def test_bond_id_depends_on_time_not_only_uids():
    uids = ["u1", "u2", "u3"]
    a = generate_bond_id(uids, timestamp="2024-05-01T12:00:00Z")
    b = generate_bond_id(uids, timestamp="2024-05-01T12:00:01Z")
    assert a != b
    assert a == generate_bond_id(uids, timestamp="2024-05-01T12:00:00Z")


def test_two_sessions_same_uids_different_times_get_different_bond_ids():
    stamps = iter(["2024-05-01T12:00:00Z", "2024-05-01T12:05:00Z"])
    m = BondingStateMachine(bond_id_fn=lambda uids: generate_bond_id(uids, timestamp=next(stamps)))
    m.start()
    ids = []
    for _ in range(2):
        for uid in ("u1", "u2", "u3"):
            m.tap_received(uid)
        m.validation_succeeded(["a"])
        ids.append(m.bond_id)
        m.reset()
    assert ids[0] != ids[1]


def test_result_pinned_to_reset_session_is_stale(machine):
    for uid in ("a", "b", "c"):
        machine.tap_received(uid)
    old_seq, uids = machine.claim_validation()
    assert uids == ["a", "b", "c"]

    machine.reset()
    for uid in ("d", "e", "f"):
        machine.tap_received(uid)

    with pytest.raises(StaleSession):
        machine.validation_succeeded(["acct-for-abc"], session_seq=old_seq)
    assert machine.phase == sm.VALIDATING
    assert machine.validated_accounts() == []

    new_seq, _ = machine.claim_validation()
    machine.validation_succeeded(["acct-for-def"], session_seq=new_seq)
    assert machine.validated_accounts() == ["acct-for-def"]


def test_claim_validation_only_once_and_only_when_validating(machine):
    assert machine.claim_validation() is None
    for uid in ("a", "b", "c"):
        machine.tap_received(uid)
    assert machine.claim_validation() is not None
    assert machine.claim_validation() is None


def test_stale_error_not_forwarded(machine):
    errors = []
    machine.subscribe_error(errors.append)
    seq = machine.session_seq
    machine.reset()
    machine.report_error(ValidationFailure("late"), session_seq=seq)
    assert errors == []


def test_rejected_events_leave_last_event_time_alone():
    clock = iter(range(1000, 2000, 100)).__next__
    m = BondingStateMachine(clock=clock)
    m.start()
    m.tap_received("u1")
    before = m.snapshot().last_event_at

    with pytest.raises(DuplicateUID):
        m.tap_received("u1")
    with pytest.raises(WrongPhase):
        m.recording_completed()

    assert m.snapshot().last_event_at == before
