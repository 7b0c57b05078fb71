import logging
from dataclasses import dataclass, field
from enum import Enum

from .config import (
    BUFFERS_PER_LAUNCH,
    ELEMENT_SIZE_BYTES,
    HOST_INIT_PREFIX,
    MAX_PROBLEM_SIZE,
)
from .errors import (
    DeviceAllocationError,
    ExecutionFailed,
    HostAllocationError,
    LaunchRejected,
    ProbeError,
    TransferError,
)
from .kernel import blocks_to_cover

logger = logging.getLogger(__name__)


class FailureKind(Enum):
    LAUNCH_REJECTED = "launch-rejected"
    EXECUTION_FAILED = "execution-failed"
    HOST_ALLOCATION_FAILED = "host-allocation-failed"
    DEVICE_ALLOCATION_FAILED = "device-allocation-failed"
    UPLOAD_FAILED = "upload-failed"
    DOWNLOAD_FAILED = "download-failed"
    INVALID_CANDIDATE = "invalid-candidate"


@dataclass(frozen=True)
class SweepCandidate:
    parameter_value: int
    problem_size: int
    memory_bytes: int
    threads_per_block: int
    launch_blocks: int
    requested_problem_size: int

    @property
    def clamped(self) -> bool:
        return self.problem_size < self.requested_problem_size


@dataclass
class LaunchOutcome:
    candidate: SweepCandidate
    succeeded: bool
    upload_ms: float | None = None
    kernel_ms: float | None = None
    download_ms: float | None = None
    failure: FailureKind | None = None
    error_message: str = ""


@dataclass
class SweepResult:
    max_successful_value: int = 0
    outcomes: list[LaunchOutcome] = field(default_factory=list)
    aborted: bool = False

    def record(self, outcome: LaunchOutcome) -> None:
        self.outcomes.append(outcome)
        if outcome.succeeded:
            self.max_successful_value = outcome.candidate.parameter_value


def footprint_bytes(n: int) -> int:
    return n * ELEMENT_SIZE_BYTES * BUFFERS_PER_LAUNCH


def max_elements_within(memory_ceiling_bytes: int) -> int:
    return memory_ceiling_bytes // (ELEMENT_SIZE_BYTES * BUFFERS_PER_LAUNCH)


def plan_block_candidate(threads_per_block: int, problem_size: int) -> SweepCandidate:
    return SweepCandidate(
        parameter_value=threads_per_block,
        problem_size=problem_size,
        memory_bytes=footprint_bytes(problem_size),
        threads_per_block=threads_per_block,
        launch_blocks=1,
        requested_problem_size=problem_size,
    )


def plan_grid_candidate(
    blocks: int,
    threads_per_block: int,
    memory_ceiling_bytes: int,
) -> SweepCandidate:
    """Size one grid-sweep point.

    The naive problem covers every requested block. When three buffers of
    that size would exceed the ceiling the problem shrinks to the largest
    size that fits, then to what the kernel's 32-bit index can address.
    The launch never uses more blocks than the final size needs.
    """
    requested = blocks * threads_per_block
    total = requested
    if footprint_bytes(total) > memory_ceiling_bytes:
        total = max_elements_within(memory_ceiling_bytes)
    total = min(total, MAX_PROBLEM_SIZE)

    return SweepCandidate(
        parameter_value=blocks,
        problem_size=total,
        memory_bytes=footprint_bytes(total),
        threads_per_block=threads_per_block,
        launch_blocks=min(blocks, blocks_to_cover(total, threads_per_block)),
        requested_problem_size=requested,
    )


def _run_block_candidate(accelerator, candidate: SweepCandidate) -> LaunchOutcome:
    n = candidate.problem_size
    with accelerator.scope() as scope:
        h_a = scope.host(n, init_count=n)
        h_b = scope.host(n, init_count=n)
        h_out = scope.host(n)
        d_a = scope.device(n)
        d_b = scope.device(n)
        d_out = scope.device(n)

        upload_timer = scope.timer()
        with upload_timer:
            accelerator.upload(d_a, h_a)
            accelerator.upload(d_b, h_b)

        kernel_timer = scope.timer()
        try:
            with kernel_timer:
                accelerator.launch_vector_add(1, candidate.threads_per_block, d_a, d_b, d_out, n)
        except LaunchRejected as e:
            return LaunchOutcome(
                candidate=candidate,
                succeeded=False,
                failure=FailureKind.LAUNCH_REJECTED,
                error_message=e.message,
            )

        download_timer = scope.timer()
        with download_timer:
            accelerator.download(h_out, d_out)

        return LaunchOutcome(
            candidate=candidate,
            succeeded=True,
            upload_ms=upload_timer.elapsed_ms(),
            kernel_ms=kernel_timer.elapsed_ms(),
            download_ms=download_timer.elapsed_ms(),
        )


def sweep_threads_per_block(accelerator, candidates, problem_size: int) -> SweepResult:
    """Launch one block of each candidate size over a fixed small problem.

    A rejected launch is recorded and the sweep moves on. Allocation and
    transfer failures propagate: with a problem this small nothing later
    could succeed either. Execution errors are not checked past the launch.
    Candidates are expected in ascending order; the maximum tracks the last
    accepted value.
    """
    result = SweepResult()
    for threads in candidates:
        candidate = plan_block_candidate(threads, problem_size)
        outcome = _run_block_candidate(accelerator, candidate)
        if not outcome.succeeded:
            logger.debug("threads/block %d rejected: %s", threads, outcome.error_message)
        result.record(outcome)
    return result


_GRID_ABORTS = (
    (HostAllocationError, FailureKind.HOST_ALLOCATION_FAILED),
    (DeviceAllocationError, FailureKind.DEVICE_ALLOCATION_FAILED),
    (LaunchRejected, FailureKind.LAUNCH_REJECTED),
    (ExecutionFailed, FailureKind.EXECUTION_FAILED),
)


def _failure_kind(error: ProbeError) -> FailureKind:
    if isinstance(error, TransferError):
        if error.direction == "download":
            return FailureKind.DOWNLOAD_FAILED
        return FailureKind.UPLOAD_FAILED
    for error_type, kind in _GRID_ABORTS:
        if isinstance(error, error_type):
            return kind
    raise ValueError(f"no failure kind for {type(error).__name__}")


def _run_grid_candidate(accelerator, candidate: SweepCandidate, init_prefix: int) -> LaunchOutcome:
    n = candidate.problem_size
    prefix = min(init_prefix, n)
    with accelerator.scope() as scope:
        h_a = scope.host(n, init_count=prefix)
        h_b = scope.host(n, init_count=prefix)
        h_out = scope.host(n)
        d_a = scope.device(n)
        d_b = scope.device(n)
        d_out = scope.device(n)

        upload_timer = scope.timer()
        with upload_timer:
            accelerator.upload(d_a, h_a)
            accelerator.upload(d_b, h_b)

        kernel_timer = scope.timer()
        with kernel_timer:
            accelerator.launch_vector_add(
                candidate.launch_blocks, candidate.threads_per_block, d_a, d_b, d_out, n
            )
        accelerator.synchronize()

        download_timer = scope.timer()
        with download_timer:
            accelerator.download(h_out, d_out)

        return LaunchOutcome(
            candidate=candidate,
            succeeded=True,
            upload_ms=upload_timer.elapsed_ms(),
            kernel_ms=kernel_timer.elapsed_ms(),
            download_ms=download_timer.elapsed_ms(),
        )


def sweep_blocks_per_grid(
    accelerator,
    candidates,
    threads_per_block: int,
    memory_ceiling_bytes: int,
    init_prefix: int = HOST_INIT_PREFIX,
) -> SweepResult:
    """Launch ever larger grids of `threads_per_block`-thread blocks.

    Non-positive block counts (an overflowed int upstream) are skipped.
    Any allocation, transfer, launch or execution failure ends the sweep:
    at this scale it means a finite resource ran out, and no larger
    candidate would fare better.
    """
    result = SweepResult()
    for blocks in candidates:
        if blocks <= 0:
            logger.warning("skipping non-positive block count %d", blocks)
            result.outcomes.append(
                LaunchOutcome(
                    candidate=SweepCandidate(blocks, 0, 0, threads_per_block, 0, 0),
                    succeeded=False,
                    failure=FailureKind.INVALID_CANDIDATE,
                    error_message=f"block count {blocks} is not positive",
                )
            )
            continue

        candidate = plan_grid_candidate(blocks, threads_per_block, memory_ceiling_bytes)
        if candidate.clamped:
            logger.debug(
                "blocks %d: %d elements clamped to %d",
                blocks, candidate.requested_problem_size, candidate.problem_size,
            )

        try:
            outcome = _run_grid_candidate(accelerator, candidate, init_prefix)
        except (
            HostAllocationError,
            DeviceAllocationError,
            TransferError,
            LaunchRejected,
            ExecutionFailed,
        ) as e:
            logger.warning("grid sweep aborted at %d blocks: %s", blocks, e)
            result.record(
                LaunchOutcome(
                    candidate=candidate,
                    succeeded=False,
                    failure=_failure_kind(e),
                    error_message=e.message,
                )
            )
            result.aborted = True
            break
        result.record(outcome)
    return result
