import re

import numpy as np
import pytest
import torch

from .accelerator import BufferScope
from .capabilities import DeviceCapabilities, capabilities_from_properties, read_capabilities
from .config import GRID_CANDIDATES, MAX_PROBLEM_SIZE, ProbeConfig
from .errors import DeviceAllocationError, DeviceQueryError, HostAllocationError, TransferError
from .kernel import blocks_to_cover, reference_vector_add
from .probe import main, run_probe
from .simulated import SimulatedAccelerator, simulated_properties
from .sweeps import (
    FailureKind,
    footprint_bytes,
    plan_grid_candidate,
    sweep_blocks_per_grid,
    sweep_threads_per_block,
)
from .theoretical import compute_theoretical_limits, multiplication_chain

GIB = 1024**3
THREAD_CANDIDATES = [128, 256, 512, 768, 1024, 1536, 2048]


def make_caps(**overrides) -> DeviceCapabilities:
    return capabilities_from_properties(simulated_properties(**overrides))


class TestCapabilities:
    def test_read_simulated_device(self):
        caps = read_capabilities(SimulatedAccelerator(), 0)
        assert caps.name == "Simulated GPU"
        assert caps.compute_capability == (8, 6)
        assert caps.max_threads_per_block == 1024
        assert caps.max_grid_dim == (2147483647, 65535, 65535)
        assert caps.warp_size == 32
        assert caps.total_global_memory_gb == 12.0

    def test_invalid_device_index(self):
        with pytest.raises(DeviceQueryError):
            read_capabilities(SimulatedAccelerator(), 1)

    def test_no_devices(self):
        with pytest.raises(DeviceQueryError):
            read_capabilities(SimulatedAccelerator(device_count=0), 0)

    def test_missing_property(self):
        props = simulated_properties()
        del props["maxGridSize"]
        with pytest.raises(DeviceQueryError):
            capabilities_from_properties(props)

    def test_capabilities_are_immutable(self):
        caps = make_caps()
        with pytest.raises(AttributeError):
            caps.warp_size = 64


class TestKernel:
    def test_single_block_covers_only_its_threads(self):
        a = np.arange(10, dtype=np.float32)
        b = np.ones(10, dtype=np.float32)
        out = np.zeros(10, dtype=np.float32)
        written = reference_vector_add(a, b, out, n=10, blocks=1, threads_per_block=4)
        assert written == 4
        np.testing.assert_array_equal(out[:4], a[:4] + 1)
        np.testing.assert_array_equal(out[4:], 0)

    def test_bounds_check_past_n(self):
        a = np.full(8, 2.0, dtype=np.float32)
        b = np.full(8, 3.0, dtype=np.float32)
        out = np.full(8, -1.0, dtype=np.float32)
        written = reference_vector_add(a, b, out, n=3, blocks=1, threads_per_block=8)
        assert written == 3
        np.testing.assert_array_equal(out, [5, 5, 5, -1, -1, -1, -1, -1])

    def test_blocks_to_cover(self):
        assert blocks_to_cover(1024, 1024) == 1
        assert blocks_to_cover(1025, 1024) == 2
        assert blocks_to_cover(1, 1024) == 1


class TestBufferScope:
    def test_release_on_normal_exit(self):
        sim = SimulatedAccelerator()
        with sim.scope() as scope:
            scope.host(16, init_count=16)
            scope.device(16)
            assert sim.live_host_bytes == 64
            assert sim.live_device_bytes == 64
        assert sim.live_host_bytes == 0
        assert sim.live_device_bytes == 0

    def test_release_on_exception(self):
        sim = SimulatedAccelerator()
        with pytest.raises(RuntimeError):
            with BufferScope(sim) as scope:
                scope.device(32)
                raise RuntimeError("boom")
        assert sim.live_device_bytes == 0


class TestThreadBlockSweep:
    def test_finds_device_limit(self):
        sim = SimulatedAccelerator()
        result = sweep_threads_per_block(sim, THREAD_CANDIDATES, 4096)
        assert result.max_successful_value == 1024
        assert [o.candidate.parameter_value for o in result.outcomes] == THREAD_CANDIDATES

        for outcome in result.outcomes[:5]:
            assert outcome.succeeded
            assert outcome.upload_ms >= 0
            assert outcome.kernel_ms >= 0
            assert outcome.download_ms >= 0

        for outcome in result.outcomes[5:]:
            assert not outcome.succeeded
            assert outcome.failure is FailureKind.LAUNCH_REJECTED
            assert outcome.upload_ms is None
            assert "invalid argument" in outcome.error_message

    def test_each_launch_uses_one_block(self):
        sim = SimulatedAccelerator()
        sweep_threads_per_block(sim, [128, 512], 4096)
        assert [(l.blocks, l.threads_per_block, l.n) for l in sim.launches] == [
            (1, 128, 4096),
            (1, 512, 4096),
        ]

    def test_resources_released(self):
        sim = SimulatedAccelerator()
        sweep_threads_per_block(sim, THREAD_CANDIDATES, 4096)
        assert sim.live_host_bytes == 0
        assert sim.live_device_bytes == 0
        assert all(buf.released for buf in sim.allocations)

    def test_max_tracks_last_accepted(self):
        result = sweep_threads_per_block(SimulatedAccelerator(), [1024, 256], 4096)
        assert result.max_successful_value == 256

    def test_nothing_launches(self):
        sim = SimulatedAccelerator(simulated_properties(max_threads_per_block=64))
        result = sweep_threads_per_block(sim, [128, 256], 4096)
        assert result.max_successful_value == 0

    def test_host_allocation_failure_is_fatal(self):
        sim = SimulatedAccelerator(host_memory_bytes=100)
        with pytest.raises(HostAllocationError):
            sweep_threads_per_block(sim, THREAD_CANDIDATES, 4096)

    def test_device_allocation_failure_is_fatal(self):
        sim = SimulatedAccelerator(device_memory_bytes=100)
        with pytest.raises(DeviceAllocationError):
            sweep_threads_per_block(sim, THREAD_CANDIDATES, 4096)
        assert sim.live_host_bytes == 0

    def test_transfer_failure_is_fatal(self):
        sim = SimulatedAccelerator(fail_transfers_above=10)
        with pytest.raises(TransferError):
            sweep_threads_per_block(sim, [128, 256], 4096)
        assert sim.live_host_bytes == 0
        assert sim.live_device_bytes == 0
        assert sim.launches == []

    def test_execution_errors_not_checked(self):
        sim = SimulatedAccelerator(fail_execution_above=0)
        result = sweep_threads_per_block(sim, THREAD_CANDIDATES, 4096)
        assert result.max_successful_value == 1024


class TestGridPlanning:
    def test_memory_clamp(self):
        ceiling = 2 * GIB
        candidate = plan_grid_candidate(1 << 20, 1024, ceiling)
        assert candidate.requested_problem_size == 1 << 30
        assert candidate.clamped
        assert footprint_bytes(candidate.problem_size) <= ceiling
        assert footprint_bytes(candidate.problem_size + 1) > ceiling
        assert candidate.problem_size == 178956970
        assert candidate.launch_blocks == 174763
        assert candidate.launch_blocks == min(1 << 20, -(-candidate.problem_size // 1024))

    def test_no_clamp_under_ceiling(self):
        candidate = plan_grid_candidate(65536, 1024, 2 * GIB)
        assert not candidate.clamped
        assert candidate.problem_size == 65536 * 1024
        assert candidate.memory_bytes == 65536 * 1024 * 12
        assert candidate.launch_blocks == 65536

    def test_index_range_cap(self):
        candidate = plan_grid_candidate(1 << 22, 1024, 1 << 40)
        assert candidate.problem_size == MAX_PROBLEM_SIZE
        assert candidate.launch_blocks == 2097152

    def test_product_past_32_bits(self):
        candidate = plan_grid_candidate(2147483647, 1024, 1 << 50)
        assert candidate.requested_problem_size == 2147483647 * 1024


class TestGridSweep:
    def test_default_candidates(self):
        sim = SimulatedAccelerator()
        result = sweep_blocks_per_grid(sim, GRID_CANDIDATES, 1024, 2 * GIB)
        assert not result.aborted
        assert result.max_successful_value == 2147483647
        assert result.outcomes[-1].failure is FailureKind.INVALID_CANDIDATE
        assert sim.live_device_bytes == 0
        assert sim.peak_device_bytes <= 2 * GIB

    def test_non_positive_candidates_skipped(self):
        sim = SimulatedAccelerator()
        result = sweep_blocks_per_grid(sim, [1, -5, 0, 4], 1024, 2 * GIB)
        assert result.max_successful_value == 4
        assert not result.aborted
        kinds = [o.failure for o in result.outcomes]
        assert kinds == [None, FailureKind.INVALID_CANDIDATE, FailureKind.INVALID_CANDIDATE, None]
        assert len(sim.launches) == 2

    def test_launch_uses_planned_block_count(self):
        sim = SimulatedAccelerator()
        sweep_blocks_per_grid(sim, [1 << 20], 1024, 2 * GIB)
        assert sim.launches[0].blocks == 174763
        assert sim.launches[0].n == 178956970

    def test_device_allocation_failure_aborts(self):
        sim = SimulatedAccelerator(device_memory_bytes=64 * 1024 * 1024)
        result = sweep_blocks_per_grid(sim, [1, 1024, 65536, 4], 1024, 2 * GIB)
        assert result.aborted
        assert result.max_successful_value == 1024
        assert len(result.outcomes) == 3
        assert result.outcomes[-1].failure is FailureKind.DEVICE_ALLOCATION_FAILED
        assert sim.live_device_bytes == 0
        assert sim.live_host_bytes == 0

    def test_host_allocation_failure_aborts(self):
        sim = SimulatedAccelerator(host_memory_bytes=20 * 1024 * 1024)
        result = sweep_blocks_per_grid(sim, [1, 65536, 2], 1024, 2 * GIB)
        assert result.aborted
        assert result.max_successful_value == 1
        assert result.outcomes[-1].failure is FailureKind.HOST_ALLOCATION_FAILED

    def test_execution_failure_aborts(self):
        sim = SimulatedAccelerator(fail_execution_above=1 << 20)
        result = sweep_blocks_per_grid(sim, [1024, 2048, 1], 1024, 2 * GIB)
        assert result.aborted
        assert result.max_successful_value == 1024
        assert len(result.outcomes) == 2
        assert result.outcomes[-1].failure is FailureKind.EXECUTION_FAILED
        assert "illegal memory access" in result.outcomes[-1].error_message

    def test_upload_failure_aborts(self):
        sim = SimulatedAccelerator(fail_transfers_above=1024)
        result = sweep_blocks_per_grid(sim, [1, 2, 3], 1024, 2 * GIB)
        assert result.aborted
        assert result.max_successful_value == 1
        assert result.outcomes[-1].failure is FailureKind.UPLOAD_FAILED

    def test_download_failure_aborts(self):
        sim = SimulatedAccelerator(fail_downloads_above=1024)
        result = sweep_blocks_per_grid(sim, [1, 2, 3], 1024, 2 * GIB)
        assert result.aborted
        assert result.max_successful_value == 1
        assert len(result.outcomes) == 2
        assert result.outcomes[-1].failure is FailureKind.DOWNLOAD_FAILED
        assert result.outcomes[-1].download_ms is None
        assert len(sim.launches) == 2
        assert sim.live_device_bytes == 0

    def test_host_inputs_only_prefix_initialized(self):
        sim = SimulatedAccelerator()
        result = sweep_blocks_per_grid(sim, [1], 1024, 2 * GIB, init_prefix=10)
        assert result.max_successful_value == 1
        host_a, host_b, host_out = sim.allocations[:3]
        for buf in (host_a, host_b):
            assert buf.location == "host"
            assert np.all(buf.data[:10] > 0)
            np.testing.assert_array_equal(buf.data[10:], 0)
        np.testing.assert_array_equal(host_out.data[:10], host_a.data[:10] + host_b.data[:10])
        np.testing.assert_array_equal(host_out.data[10:], 0)

    def test_launch_rejection_aborts(self):
        sim = SimulatedAccelerator(simulated_properties(max_grid_dim=(1000, 65535, 65535)))
        result = sweep_blocks_per_grid(sim, [1, 2000, 4], 1024, 2 * GIB)
        assert result.aborted
        assert result.max_successful_value == 1
        assert result.outcomes[-1].failure is FailureKind.LAUNCH_REJECTED


class TestTheoreticalLimits:
    def test_total_threads_exact(self):
        caps = make_caps()
        limits = compute_theoretical_limits(caps)
        assert limits.max_threads_total == 1024 * 2147483647 * 65535 * 65535
        assert limits.max_threads_total > 2**64

    def test_concurrent_threads(self):
        limits = compute_theoretical_limits(make_caps())
        assert limits.max_concurrent_threads == 15 * 2048

    def test_small_device(self):
        caps = make_caps(max_threads_per_block=512, max_grid_dim=(65535, 65535, 1))
        limits = compute_theoretical_limits(caps)
        assert limits.max_threads_total == 512 * 65535 * 65535

    def test_multiplication_chain(self):
        assert multiplication_chain([4, 3, 2]) == ["4 × 3 × 2", "= 12 × 2", "= 24"]


class TestProbe:
    def test_idempotent(self):
        config = ProbeConfig()
        first = run_probe(SimulatedAccelerator(), config)
        second = run_probe(SimulatedAccelerator(), config)
        assert first.block_sweep.max_successful_value == second.block_sweep.max_successful_value
        assert first.grid_sweep.max_successful_value == second.grid_sweep.max_successful_value
        assert [o.succeeded for o in first.grid_sweep.outcomes] == [
            o.succeeded for o in second.grid_sweep.outcomes
        ]

    def test_grid_threads_capped_by_device(self):
        sim = SimulatedAccelerator(simulated_properties(max_threads_per_block=512))
        report = run_probe(sim, ProbeConfig(grid_candidates=(1, 2)))
        assert report.grid_threads_per_block == 512
        assert report.block_sweep.max_successful_value == 512

    def test_summary_lines(self):
        report = run_probe(SimulatedAccelerator())
        lines = report.summary().rstrip("\n").splitlines()[-6:]
        assert lines[0] == "Max threads per block (demonstrated): 1024"
        assert lines[1] == "Max blocks per grid (demonstrated): 2147483647"
        assert lines[2] == "Max grid X dimension (theoretical): 2147483647"
        assert lines[3] == f"Max total threads (theoretical): {1024 * 2147483647 * 65535 * 65535}"
        assert lines[4] == "Max concurrent threads: 15 × 2048 = 30720"
        assert lines[5] == "Global memory: 12.00 GB"

    def test_report_contents(self):
        text = run_probe(SimulatedAccelerator()).summary()
        assert "Device name: Simulated GPU" in text
        assert "Compute capability: 8.6" in text
        assert "Max grid dimensions: (2147483647, 65535, 65535)" in text
        assert "Total concurrent threads: 30720" in text
        assert "Failed at 1536 threads per block (launch-rejected): CUDA_ERROR_INVALID_VALUE" in text
        assert "Max successful threads per block: 1024" in text
        assert "Memory clamp:" in text
        assert "Launch blocks: 174763" in text
        assert "Blocks per grid: -2147483648" in text
        assert "1024 × 2147483647 × 65535 × 65535" in text
        assert re.search(r"Upload: \d+\.\d{3} ms, Kernel: \d+\.\d{3} ms, Download: \d+\.\d{3} ms", text)
        assert text.index("Device Properties") < text.index("Thread-Block Sweep")
        assert text.index("Thread-Block Sweep") < text.index("Grid Sweep")
        assert text.index("Grid Sweep") < text.index("Theoretical Maximum Threads")
        assert text.index("Theoretical Maximum Threads") < text.index("Summary")

    def test_main_success(self, capsys):
        assert main(SimulatedAccelerator()) == 0
        assert "Summary" in capsys.readouterr().out

    def test_main_device_query_failure(self, capsys):
        assert main(SimulatedAccelerator(device_count=0)) == 1
        assert "Error: cudaGetDeviceProperties: invalid device ordinal" in capsys.readouterr().err

    def test_main_host_allocation_failure(self, capsys):
        assert main(SimulatedAccelerator(host_memory_bytes=10)) == 1
        assert "malloc" in capsys.readouterr().err

    @pytest.mark.skipif(torch.cuda.is_available(), reason="CUDA available")
    def test_main_without_cuda(self, capsys):
        pytest.importorskip("cupy")
        assert main() == 1
        assert "Error: cudaGetDeviceCount: CUDA not available" in capsys.readouterr().err

    def test_candidate_list_probes_int32_boundary(self):
        assert 2**31 - 1 in GRID_CANDIDATES
        assert -(2**31) in GRID_CANDIDATES


@pytest.mark.skipif(not torch.cuda.is_available(), reason="CUDA not available")
class TestCudaDevice:
    def test_read_capabilities(self):
        from .cuda_backend import CudaAccelerator

        caps = read_capabilities(CudaAccelerator(0), 0)
        assert caps.warp_size == 32
        assert caps.max_threads_per_block > 0
        assert len(caps.max_grid_dim) == 3

    def test_oversized_block_rejected(self):
        from .cuda_backend import CudaAccelerator

        accelerator = CudaAccelerator(0)
        caps = read_capabilities(accelerator, 0)
        result = sweep_threads_per_block(accelerator, [32, caps.max_threads_per_block * 2], 4096)
        assert result.max_successful_value == 32
        assert result.outcomes[1].failure is FailureKind.LAUNCH_REJECTED

    def test_invalid_device_index(self):
        from .cuda_backend import CudaAccelerator

        with pytest.raises(DeviceQueryError):
            CudaAccelerator(torch.cuda.device_count())

    def test_small_grid_executes(self):
        from .cuda_backend import CudaAccelerator

        result = sweep_blocks_per_grid(CudaAccelerator(0), [1, 16], 256, 64 * 1024 * 1024)
        assert result.max_successful_value == 16
        assert not result.aborted


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
