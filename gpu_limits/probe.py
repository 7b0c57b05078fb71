import logging
import sys
from dataclasses import dataclass

from .capabilities import DeviceCapabilities, read_capabilities
from .config import ProbeConfig
from .errors import ProbeError
from .report import render_report
from .sweeps import SweepResult, sweep_blocks_per_grid, sweep_threads_per_block
from .theoretical import TheoreticalLimits, compute_theoretical_limits

logger = logging.getLogger(__name__)


@dataclass
class ProbeReport:
    config: ProbeConfig
    capabilities: DeviceCapabilities
    block_sweep: SweepResult
    grid_sweep: SweepResult
    grid_threads_per_block: int
    limits: TheoreticalLimits

    def summary(self) -> str:
        return render_report(
            self.capabilities,
            self.block_sweep,
            self.grid_sweep,
            self.limits,
            block_problem_size=self.config.block_sweep_problem_size,
            grid_threads_per_block=self.grid_threads_per_block,
            memory_ceiling_bytes=self.config.memory_ceiling_bytes,
        )


def run_probe(accelerator, config: ProbeConfig | None = None) -> ProbeReport:
    if config is None:
        config = ProbeConfig()

    caps = read_capabilities(accelerator, config.device_index)

    block_sweep = sweep_threads_per_block(
        accelerator, config.thread_candidates, config.block_sweep_problem_size
    )

    grid_threads = min(config.grid_threads_per_block, caps.max_threads_per_block)
    grid_sweep = sweep_blocks_per_grid(
        accelerator,
        config.grid_candidates,
        grid_threads,
        config.memory_ceiling_bytes,
        init_prefix=config.host_init_prefix,
    )

    return ProbeReport(
        config=config,
        capabilities=caps,
        block_sweep=block_sweep,
        grid_sweep=grid_sweep,
        grid_threads_per_block=grid_threads,
        limits=compute_theoretical_limits(caps),
    )


def main(accelerator=None, config: ProbeConfig | None = None) -> int:
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")
    if config is None:
        config = ProbeConfig()

    try:
        if accelerator is None:
            from .cuda_backend import CudaAccelerator

            accelerator = CudaAccelerator(config.device_index, seed=config.seed)
        report = run_probe(accelerator, config)
    except ProbeError as e:
        logger.debug("probe failed", exc_info=True)
        print(f"Error: {e.operation}: {e.message}", file=sys.stderr)
        return 1

    print(report.summary(), end="")
    return 0


if __name__ == "__main__":
    sys.exit(main())
