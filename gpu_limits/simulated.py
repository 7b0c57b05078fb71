from dataclasses import dataclass

import numpy as np

from .accelerator import Accelerator
from .errors import (
    DeviceAllocationError,
    DeviceQueryError,
    ExecutionFailed,
    HostAllocationError,
    LaunchRejected,
    TransferError,
)
from .kernel import covered_elements, reference_vector_add

INVALID_VALUE = "CUDA_ERROR_INVALID_VALUE: invalid argument"
ILLEGAL_ADDRESS = "CUDA_ERROR_ILLEGAL_ADDRESS: an illegal memory access was encountered"
OUT_OF_MEMORY = "CUDA_ERROR_OUT_OF_MEMORY: out of memory"

# Buffers larger than this are tracked by size only, never backed by memory.
MATERIALIZE_LIMIT = 1 << 20

TRANSFER_GBPS = 12.0
MEMORY_GBPS = 900.0
LAUNCH_OVERHEAD_MS = 0.005


def simulated_properties(
    name: str = "Simulated GPU",
    compute_capability: tuple = (8, 6),
    max_threads_per_block: int = 1024,
    max_grid_dim: tuple = (2147483647, 65535, 65535),
    warp_size: int = 32,
    multiprocessor_count: int = 15,
    max_threads_per_multiprocessor: int = 2048,
    total_global_memory_bytes: int = 12 * 1024**3,
) -> dict:
    return {
        "name": name.encode(),
        "major": compute_capability[0],
        "minor": compute_capability[1],
        "maxThreadsPerBlock": max_threads_per_block,
        "maxGridSize": tuple(max_grid_dim),
        "warpSize": warp_size,
        "multiProcessorCount": multiprocessor_count,
        "maxThreadsPerMultiProcessor": max_threads_per_multiprocessor,
        "totalGlobalMem": total_global_memory_bytes,
    }


@dataclass
class SimulatedBuffer:
    n: int
    location: str
    data: np.ndarray | None = None
    released: bool = False

    @property
    def nbytes(self) -> int:
        return self.n * 4


@dataclass
class LaunchRecord:
    blocks: int
    threads_per_block: int
    n: int


class SimulatedTimer:
    def __init__(self, accelerator: "SimulatedAccelerator"):
        self.accelerator = accelerator
        self.start = None
        self.stop = None

    def __enter__(self):
        self.start = self.accelerator.clock_ms
        return self

    def __exit__(self, exc_type, exc, tb):
        self.stop = self.accelerator.clock_ms
        return False

    def elapsed_ms(self) -> float:
        return self.stop - self.start


class SimulatedAccelerator(Accelerator):
    """In-process stand-in for a CUDA device.

    Limits come from a property table shaped like the runtime's. Launches
    outside those limits are rejected, allocations beyond the configured host
    or device budget fail, and execution can be made to fail past a given
    problem size. Small buffers hold real data so kernel results can be
    checked; time advances deterministically with the bytes moved.
    """

    def __init__(
        self,
        properties: dict | None = None,
        device_count: int = 1,
        host_memory_bytes: int | None = None,
        device_memory_bytes: int | None = None,
        fail_transfers_above: int | None = None,
        fail_downloads_above: int | None = None,
        fail_execution_above: int | None = None,
        seed: int = 0,
    ):
        self.properties = properties if properties is not None else simulated_properties()
        self.device_index = 0
        self.device_count = device_count
        self.host_memory_bytes = host_memory_bytes
        if device_memory_bytes is None:
            device_memory_bytes = self.properties.get("totalGlobalMem")
        self.device_memory_bytes = device_memory_bytes
        self.fail_transfers_above = fail_transfers_above
        self.fail_downloads_above = fail_downloads_above
        self.fail_execution_above = fail_execution_above

        self.clock_ms = 0.0
        self.live_host_bytes = 0
        self.live_device_bytes = 0
        self.peak_device_bytes = 0
        self.launches: list[LaunchRecord] = []
        self.allocations: list[SimulatedBuffer] = []
        self._pending_error = None
        self._rng = np.random.default_rng(seed)

    def device_properties(self, device_index: int) -> dict:
        if not 0 <= device_index < self.device_count:
            raise DeviceQueryError(
                "cudaGetDeviceProperties",
                f"invalid device ordinal {device_index} ({self.device_count} device(s) present)",
            )
        return dict(self.properties)

    def alloc_host(self, n: int, init_count: int = 0) -> SimulatedBuffer:
        nbytes = n * 4
        if self.host_memory_bytes is not None and self.live_host_bytes + nbytes > self.host_memory_bytes:
            raise HostAllocationError("malloc", f"cannot allocate {nbytes} bytes")
        buf = SimulatedBuffer(n=n, location="host")
        if n <= MATERIALIZE_LIMIT:
            buf.data = np.zeros(n, dtype=np.float32)
            count = min(init_count, n)
            buf.data[:count] = self._rng.random(count, dtype=np.float32)
        self.live_host_bytes += nbytes
        self.allocations.append(buf)
        return buf

    def alloc_device(self, n: int) -> SimulatedBuffer:
        nbytes = n * 4
        if self.device_memory_bytes is not None and self.live_device_bytes + nbytes > self.device_memory_bytes:
            raise DeviceAllocationError("cudaMalloc", OUT_OF_MEMORY)
        buf = SimulatedBuffer(n=n, location="device")
        if n <= MATERIALIZE_LIMIT:
            buf.data = np.zeros(n, dtype=np.float32)
        self.live_device_bytes += nbytes
        self.peak_device_bytes = max(self.peak_device_bytes, self.live_device_bytes)
        self.allocations.append(buf)
        return buf

    def upload(self, device_buffer: SimulatedBuffer, host_buffer: SimulatedBuffer) -> None:
        self._copy(device_buffer, host_buffer, "cudaMemcpy HostToDevice", "upload")

    def download(self, host_buffer: SimulatedBuffer, device_buffer: SimulatedBuffer) -> None:
        if self.fail_downloads_above is not None and device_buffer.n > self.fail_downloads_above:
            raise TransferError("cudaMemcpy DeviceToHost", INVALID_VALUE, direction="download")
        self._copy(host_buffer, device_buffer, "cudaMemcpy DeviceToHost", "download")

    def launch_vector_add(self, blocks, threads_per_block, a, b, out, n) -> None:
        max_threads = self.properties["maxThreadsPerBlock"]
        max_blocks = self.properties["maxGridSize"][0]
        if not 0 < threads_per_block <= max_threads or not 0 < blocks <= max_blocks:
            raise LaunchRejected("kernel launch", INVALID_VALUE)

        self.launches.append(LaunchRecord(blocks, threads_per_block, n))
        if self.fail_execution_above is not None and n > self.fail_execution_above:
            self._pending_error = ILLEGAL_ADDRESS
            return

        if a.data is not None and b.data is not None and out.data is not None:
            reference_vector_add(a.data, b.data, out.data, n, blocks, threads_per_block)
        moved = covered_elements(n, blocks, threads_per_block) * 4 * 3
        self.clock_ms += LAUNCH_OVERHEAD_MS + moved / (MEMORY_GBPS * 1e6)

    def synchronize(self) -> None:
        if self._pending_error is not None:
            message, self._pending_error = self._pending_error, None
            raise ExecutionFailed("cudaDeviceSynchronize", message)

    def timer(self) -> SimulatedTimer:
        return SimulatedTimer(self)

    def release(self, resource) -> None:
        if not isinstance(resource, SimulatedBuffer) or resource.released:
            return
        resource.released = True
        if resource.location == "host":
            self.live_host_bytes -= resource.nbytes
        else:
            self.live_device_bytes -= resource.nbytes

    def _copy(self, dst: SimulatedBuffer, src: SimulatedBuffer, operation: str, direction: str) -> None:
        if self.fail_transfers_above is not None and src.n > self.fail_transfers_above:
            raise TransferError(operation, INVALID_VALUE, direction=direction)
        if dst.data is not None and src.data is not None:
            count = min(dst.n, src.n)
            dst.data[:count] = src.data[:count]
        self.clock_ms += src.nbytes / (TRANSFER_GBPS * 1e6)
