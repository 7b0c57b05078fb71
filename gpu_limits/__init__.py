"""
GPU Execution Limits

Empirically probes a CUDA device:
- Static limits reported by the runtime
- Largest thread-block size that launches
- Largest grid that launches and executes under a memory ceiling
- Theoretical thread maxima implied by the reported limits
"""

from .accelerator import Accelerator, BufferScope
from .capabilities import DeviceCapabilities, read_capabilities
from .config import ProbeConfig
from .errors import (
    DeviceAllocationError,
    DeviceQueryError,
    ExecutionFailed,
    HostAllocationError,
    LaunchRejected,
    ProbeError,
    TransferError,
)
from .probe import ProbeReport, main, run_probe
from .simulated import SimulatedAccelerator, simulated_properties
from .sweeps import (
    FailureKind,
    LaunchOutcome,
    SweepCandidate,
    SweepResult,
    plan_grid_candidate,
    sweep_blocks_per_grid,
    sweep_threads_per_block,
)
from .theoretical import TheoreticalLimits, compute_theoretical_limits

__all__ = [
    "Accelerator",
    "BufferScope",
    "DeviceCapabilities",
    "read_capabilities",
    "ProbeConfig",
    "ProbeError",
    "DeviceQueryError",
    "HostAllocationError",
    "DeviceAllocationError",
    "TransferError",
    "LaunchRejected",
    "ExecutionFailed",
    "ProbeReport",
    "run_probe",
    "main",
    "SimulatedAccelerator",
    "simulated_properties",
    "FailureKind",
    "LaunchOutcome",
    "SweepCandidate",
    "SweepResult",
    "plan_grid_candidate",
    "sweep_threads_per_block",
    "sweep_blocks_per_grid",
    "TheoreticalLimits",
    "compute_theoretical_limits",
]
