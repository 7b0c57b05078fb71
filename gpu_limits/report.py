from .capabilities import DeviceCapabilities
from .sweeps import FailureKind, LaunchOutcome, SweepResult, footprint_bytes
from .theoretical import TheoreticalLimits, multiplication_chain, theoretical_factors

HEAVY_RULE = "=" * 60
LIGHT_RULE = "-" * 60


def _gb(num_bytes: int) -> str:
    return f"{num_bytes / 1024 / 1024 / 1024:.2f} GB"


def render_device(caps: DeviceCapabilities) -> list[str]:
    major, minor = caps.compute_capability
    x, y, z = caps.max_grid_dim
    return [
        "Device Properties",
        HEAVY_RULE,
        f"Device name: {caps.name}",
        f"Compute capability: {major}.{minor}",
        f"Max threads per block: {caps.max_threads_per_block}",
        f"Max grid dimensions: ({x}, {y}, {z})",
        f"Total global memory: {_gb(caps.total_global_memory_bytes)}",
        f"Warp size: {caps.warp_size}",
        f"Multiprocessors: {caps.multiprocessor_count}",
        f"Max threads per multiprocessor: {caps.max_threads_per_multiprocessor}",
        f"Total concurrent threads: {caps.multiprocessor_count * caps.max_threads_per_multiprocessor}",
    ]


def _timing_line(outcome: LaunchOutcome) -> str:
    return (
        f"  Upload: {outcome.upload_ms:.3f} ms, "
        f"Kernel: {outcome.kernel_ms:.3f} ms, "
        f"Download: {outcome.download_ms:.3f} ms"
    )


def render_block_sweep(result: SweepResult, problem_size: int) -> list[str]:
    lines = [f"Thread-Block Sweep (problem size {problem_size}, 1 block)", LIGHT_RULE]
    for outcome in result.outcomes:
        threads = outcome.candidate.parameter_value
        lines.append(f"Threads per block: {threads}")
        if outcome.succeeded:
            lines.append(_timing_line(outcome))
            lines.append(f"  Success: {threads} threads per block launched")
        else:
            lines.append(
                f"  Failed at {threads} threads per block "
                f"({outcome.failure.value}): {outcome.error_message}"
            )
    lines.append(f"Max successful threads per block: {result.max_successful_value}")
    return lines


def render_grid_sweep(result: SweepResult, threads_per_block: int, memory_ceiling_bytes: int) -> list[str]:
    lines = [
        f"Grid Sweep ({threads_per_block} threads per block, "
        f"memory ceiling {_gb(memory_ceiling_bytes)})",
        LIGHT_RULE,
    ]
    for outcome in result.outcomes:
        candidate = outcome.candidate
        lines.append(f"Blocks per grid: {candidate.parameter_value}")
        if outcome.failure is FailureKind.INVALID_CANDIDATE:
            lines.append(f"  Skipped: {outcome.error_message}")
            continue
        if candidate.clamped:
            requested = candidate.requested_problem_size
            lines.append(
                f"  Memory clamp: {requested} elements would need "
                f"{_gb(footprint_bytes(requested))}, using {candidate.problem_size} elements "
                f"({_gb(candidate.memory_bytes)})"
            )
        lines.append(f"  Launch blocks: {candidate.launch_blocks}")
        if outcome.succeeded:
            lines.append(_timing_line(outcome))
            lines.append(f"  Success: {candidate.parameter_value} blocks per grid executed")
        else:
            lines.append(
                f"  Failed at {candidate.parameter_value} blocks per grid "
                f"({outcome.failure.value}): {outcome.error_message}"
            )
    if result.aborted:
        lines.append("Grid sweep stopped after the first failure")
    lines.append(f"Max successful blocks per grid: {result.max_successful_value}")
    return lines


def render_theoretical(caps: DeviceCapabilities, limits: TheoreticalLimits) -> list[str]:
    lines = ["Theoretical Maximum Threads", LIGHT_RULE]
    lines.append("threads/block × grid X × grid Y × grid Z")
    lines.extend(multiplication_chain(theoretical_factors(caps)))
    lines.append(f"Theoretical max threads: {limits.max_threads_total}")
    return lines


def render_summary(
    caps: DeviceCapabilities,
    block_result: SweepResult,
    grid_result: SweepResult,
    limits: TheoreticalLimits,
) -> list[str]:
    return [
        "Summary",
        HEAVY_RULE,
        f"Max threads per block (demonstrated): {block_result.max_successful_value}",
        f"Max blocks per grid (demonstrated): {grid_result.max_successful_value}",
        f"Max grid X dimension (theoretical): {caps.max_grid_dim[0]}",
        f"Max total threads (theoretical): {limits.max_threads_total}",
        f"Max concurrent threads: {caps.multiprocessor_count} × "
        f"{caps.max_threads_per_multiprocessor} = {limits.max_concurrent_threads}",
        f"Global memory: {_gb(caps.total_global_memory_bytes)}",
    ]


def render_report(
    caps: DeviceCapabilities,
    block_result: SweepResult,
    grid_result: SweepResult,
    limits: TheoreticalLimits,
    block_problem_size: int,
    grid_threads_per_block: int,
    memory_ceiling_bytes: int,
) -> str:
    sections = [
        render_device(caps),
        render_block_sweep(block_result, block_problem_size),
        render_grid_sweep(grid_result, grid_threads_per_block, memory_ceiling_bytes),
        render_theoretical(caps, limits),
        render_summary(caps, block_result, grid_result, limits),
    ]
    return "\n\n".join("\n".join(section) for section in sections) + "\n"
