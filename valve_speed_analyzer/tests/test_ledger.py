"""Tests for the approval / voltage-assignment ledger."""

from __future__ import annotations

import itertools

import pytest

from valve_speed_analyzer.analysis.ledger import AssignmentLedger
from valve_speed_analyzer.errors import InvalidVoltage
from valve_speed_analyzer.models.catalog import AVAILABLE_VOLTAGES


def _assert_bijection(ledger: AssignmentLedger) -> None:
    approved = [n for n in ledger.file_names if ledger.entry(n).approved]
    bound = [ledger.entry(n).voltage for n in ledger.file_names if ledger.entry(n).voltage is not None]
    assert len(approved) == len(bound)
    assert len(set(bound)) == len(bound)
    for n in approved:
        assert ledger.entry(n).voltage is not None
    assert sorted(ledger.assigned_voltages() + ledger.available_voltages()) == sorted(AVAILABLE_VOLTAGES)


def test_new_files_are_unapproved() -> None:
    ledger = AssignmentLedger(["a", "b"])
    for name in ("a", "b"):
        e = ledger.entry(name)
        assert not e.approved and not e.manually_adjusted and e.voltage is None
    assert ledger.available_voltages() == list(AVAILABLE_VOLTAGES)
    assert ledger.assigned_voltages() == []
    assert not ledger.all_approved


def test_register_duplicate_raises() -> None:
    ledger = AssignmentLedger(["a"])
    with pytest.raises(ValueError):
        ledger.register("a")


def test_approve_binds_voltage_and_returns_next() -> None:
    ledger = AssignmentLedger(["a", "b", "c"])
    nxt = ledger.approve("a", 2.0)
    assert nxt == "b"
    assert ledger.entry("a").approved
    assert ledger.entry("a").voltage == 2.0
    assert 2.0 not in ledger.available_voltages()
    assert ledger.assigned_voltages() == [2.0]
    assert ledger.bindings() == {"a": 2.0}


def test_next_unapproved_wraps_around() -> None:
    ledger = AssignmentLedger(["a", "b", "c"])
    ledger.approve("a", 1.0)
    assert ledger.approve("c", 3.0) == "b"
    assert ledger.approve("b", 5.0) is None
    assert ledger.all_approved


def test_approve_matches_catalog_with_float_tolerance() -> None:
    ledger = AssignmentLedger(["a"])
    ledger.approve("a", 0.1 + 0.2 - 0.2)
    assert ledger.entry("a").voltage == 0.1


@pytest.mark.parametrize("voltage", [0.0, 0.6, -2.0, 11.0, float("nan"), "abc"])
def test_approve_rejects_voltage_outside_catalog(voltage) -> None:
    ledger = AssignmentLedger(["a"])
    with pytest.raises(InvalidVoltage):
        ledger.approve("a", voltage)
    assert not ledger.entry("a").approved


def test_approve_rejects_taken_voltage_without_side_effects() -> None:
    ledger = AssignmentLedger(["a", "b"])
    ledger.approve("a", 4.0)
    version = ledger.version
    with pytest.raises(InvalidVoltage):
        ledger.approve("b", 4.0)
    assert ledger.version == version
    assert not ledger.entry("b").approved
    assert ledger.holder_of(4.0) == "a"


def test_reapprove_releases_own_voltage() -> None:
    ledger = AssignmentLedger(["a", "b"])
    ledger.approve("a", 4.0)
    ledger.approve("a", 4.0)  # same voltage again is allowed
    ledger.approve("a", 5.0)
    assert ledger.entry("a").voltage == 5.0
    assert 4.0 in ledger.available_voltages()
    ledger.approve("b", 4.0)
    _assert_bijection(ledger)


def test_unknown_file_raises_key_error() -> None:
    ledger = AssignmentLedger(["a"])
    with pytest.raises(KeyError):
        ledger.approve("nope", 1.0)
    with pytest.raises(KeyError):
        ledger.unapprove_on_edit("nope")


def test_unapprove_on_edit_frees_voltage() -> None:
    ledger = AssignmentLedger(["a", "b"])
    ledger.approve("a", 7.0)
    ledger.unapprove_on_edit("a")
    e = ledger.entry("a")
    assert not e.approved
    assert e.manually_adjusted
    assert e.voltage is None
    assert 7.0 in ledger.available_voltages()
    # The freed voltage can be taken by another file.
    ledger.approve("b", 7.0)
    _assert_bijection(ledger)


def test_unapprove_on_edit_of_unapproved_file_succeeds() -> None:
    ledger = AssignmentLedger(["a"])
    ledger.unapprove_on_edit("a")
    assert ledger.entry("a").manually_adjusted


def test_bijection_holds_through_random_operations() -> None:
    names = [f"f{i}" for i in range(5)]
    ledger = AssignmentLedger(names)
    volts = [1.0, 2.0, 3.0]
    for k, (name, v) in enumerate(itertools.product(names, volts)):
        if k % 4 == 3:
            ledger.unapprove_on_edit(name)
        else:
            try:
                ledger.approve(name, v)
            except InvalidVoltage:
                pass
        _assert_bijection(ledger)


def test_version_and_snapshot() -> None:
    ledger = AssignmentLedger(["a"])
    v0 = ledger.version
    ledger.approve("a", 9.0)
    assert ledger.version == v0 + 1
    snap = ledger.snapshot()
    assert snap["entries"]["a"] == {"approved": True, "manually_adjusted": False, "voltage": 9.0}
    assert 9.0 in snap["assigned_voltages"]
    assert snap["all_approved"] is True
