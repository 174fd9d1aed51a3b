from .catalog import AVAILABLE_VOLTAGES, MACHINE_TYPES, TARGET_SPEEDS, get_machine_params
from .profile import DetectionConfig, SpeedCheckProfile
from .results import (
    BezierSegment,
    CurvePoint,
    DetectionMethod,
    DualSlopeResult,
    LedgerEntry,
    MachineParams,
    RampSegment,
    RegressionResult,
    VoltagePoint,
)
from .waveform import IngestFailure, Waveform

__all__ = [
    "AVAILABLE_VOLTAGES",
    "MACHINE_TYPES",
    "TARGET_SPEEDS",
    "get_machine_params",
    "DetectionConfig",
    "SpeedCheckProfile",
    "BezierSegment",
    "CurvePoint",
    "DetectionMethod",
    "DualSlopeResult",
    "LedgerEntry",
    "MachineParams",
    "RampSegment",
    "RegressionResult",
    "VoltagePoint",
    "IngestFailure",
    "Waveform",
]
