"""Approval and voltage-assignment ledger.

Each registered file is either unapproved (no voltage) or approved and bound to
exactly one voltage magnitude from the catalog. A voltage is held by at most
one file at a time, so the catalog is always partitioned into assigned and
available voltages.

Entries are immutable :class:`LedgerEntry` values; every transition replaces
the entry and bumps :attr:`AssignmentLedger.version`.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any, Dict, Iterable, List, Optional, Tuple

from valve_speed_analyzer.errors import InvalidVoltage
from valve_speed_analyzer.models.catalog import AVAILABLE_VOLTAGES, catalog_voltage
from valve_speed_analyzer.models.results import LedgerEntry


class AssignmentLedger:
    """Per-file approval state with unique voltage bindings.

    Files are kept in registration order, which is also the order used to pick
    the next unapproved file after an approval.
    """

    def __init__(self, file_names: Iterable[str] = (), *, catalog: Tuple[float, ...] = AVAILABLE_VOLTAGES) -> None:
        self._catalog = tuple(catalog)
        self._entries: Dict[str, LedgerEntry] = {}
        self._version = 0
        for name in file_names:
            self.register(name)

    # -------------------------
    # Queries
    # -------------------------
    @property
    def version(self) -> int:
        return self._version

    @property
    def file_names(self) -> List[str]:
        return list(self._entries)

    @property
    def catalog(self) -> Tuple[float, ...]:
        return self._catalog

    @property
    def all_approved(self) -> bool:
        return bool(self._entries) and all(e.approved for e in self._entries.values())

    def __contains__(self, file_name: object) -> bool:
        return file_name in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def entry(self, file_name: str) -> LedgerEntry:
        try:
            return self._entries[file_name]
        except KeyError:
            raise KeyError(f"Unknown file '{file_name}'") from None

    def bindings(self) -> Dict[str, float]:
        """Approved files and their bound voltage, in registration order."""
        return {
            name: e.voltage
            for name, e in self._entries.items()
            if e.approved and e.voltage is not None
        }

    def assigned_voltages(self) -> List[float]:
        """Catalog voltages currently bound to a file (ascending)."""
        bound = {e.voltage for e in self._entries.values() if e.voltage is not None}
        return [v for v in self._catalog if v in bound]

    def available_voltages(self) -> List[float]:
        """Catalog voltages not bound to any file (ascending)."""
        bound = {e.voltage for e in self._entries.values() if e.voltage is not None}
        return [v for v in self._catalog if v not in bound]

    def holder_of(self, voltage: float) -> Optional[str]:
        v = catalog_voltage(voltage, self._catalog)
        if v is None:
            return None
        for name, e in self._entries.items():
            if e.voltage == v:
                return name
        return None

    def next_unapproved(self, after: Optional[str] = None) -> Optional[str]:
        """First unapproved file after ``after`` in registration order, wrapping around.

        ``after`` itself is never returned. Returns None when every other file
        is approved.
        """
        names = list(self._entries)
        if not names:
            return None
        start = names.index(after) + 1 if after in self._entries else 0
        for k in range(len(names)):
            name = names[(start + k) % len(names)]
            if name != after and not self._entries[name].approved:
                return name
        return None

    def snapshot(self) -> Dict[str, Any]:
        """Plain-data view for the UI."""
        return {
            "version": self._version,
            "entries": {name: e.to_dict() for name, e in self._entries.items()},
            "available_voltages": self.available_voltages(),
            "assigned_voltages": self.assigned_voltages(),
            "all_approved": self.all_approved,
        }

    # -------------------------
    # Transitions
    # -------------------------
    def register(self, file_name: str) -> None:
        """Add a file as unapproved. Raises ValueError for duplicates."""
        if file_name in self._entries:
            raise ValueError(f"File '{file_name}' is already registered")
        self._entries[file_name] = LedgerEntry()
        self._version += 1

    def approve(self, file_name: str, voltage: float) -> Optional[str]:
        """Approve ``file_name`` and bind it to ``voltage``.

        Re-approving an approved file first releases its own voltage, so it may
        keep the same one or move to another available one.

        Returns
        -------
        str or None
            Next unapproved file (auto-advance hint).

        Raises
        ------
        KeyError
            Unknown file.
        InvalidVoltage
            Voltage not in the catalog or bound to another file.
        """
        current = self.entry(file_name)
        v = catalog_voltage(voltage, self._catalog)
        if v is None:
            raise InvalidVoltage(f"Voltage {voltage!r} is not in the voltage catalog")

        holder = self.holder_of(v)
        if holder is not None and holder != file_name:
            raise InvalidVoltage(f"Voltage {v:g} V is already assigned to '{holder}'")

        self._entries[file_name] = replace(current, approved=True, voltage=v)
        self._version += 1
        return self.next_unapproved(after=file_name)

    def unapprove_on_edit(self, file_name: str) -> None:
        """Mark a file as manually adjusted; clear approval and free its voltage."""
        current = self.entry(file_name)
        self._entries[file_name] = replace(current, approved=False, manually_adjusted=True, voltage=None)
        self._version += 1
