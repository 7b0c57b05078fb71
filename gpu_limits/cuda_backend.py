import cupy as cp
import numpy as np
import torch
from cupy.cuda.compiler import CompileException

from .accelerator import Accelerator
from .errors import (
    DeviceAllocationError,
    DeviceQueryError,
    ExecutionFailed,
    HostAllocationError,
    LaunchRejected,
    TransferError,
)
from .kernel import VECTOR_ADD_NAME, VECTOR_ADD_SOURCE


class EventTimer:
    def __init__(self, device: torch.device):
        self.device = device
        self.start = torch.cuda.Event(enable_timing=True)
        self.stop = torch.cuda.Event(enable_timing=True)

    def __enter__(self):
        self.start.record(torch.cuda.current_stream(self.device))
        return self

    def __exit__(self, exc_type, exc, tb):
        self.stop.record(torch.cuda.current_stream(self.device))
        return False

    def elapsed_ms(self) -> float:
        try:
            self.stop.synchronize()
            return self.start.elapsed_time(self.stop)
        except RuntimeError as e:
            raise ExecutionFailed("cudaEventSynchronize", str(e)) from e


class CudaAccelerator(Accelerator):
    """CUDA device driven through torch (memory, copies, events) and cupy (raw launch).

    torch cannot launch a kernel with an arbitrary block size, so the vector
    add is compiled with cupy.RawKernel and launched on torch's current
    stream, operating on the torch tensors in place.
    """

    def __init__(self, device_index: int = 0, seed: int = 0):
        if not torch.cuda.is_available():
            raise DeviceQueryError("cudaGetDeviceCount", "CUDA not available")
        count = torch.cuda.device_count()
        if not 0 <= device_index < count:
            raise DeviceQueryError(
                "cudaSetDevice", f"invalid device ordinal {device_index} ({count} device(s) present)"
            )

        self.device_index = device_index
        self.device = torch.device("cuda", device_index)
        self._generator = torch.Generator().manual_seed(seed)

        try:
            self._cupy_device = cp.cuda.Device(device_index)
            with self._cupy_device:
                self._stream = cp.cuda.ExternalStream(
                    torch.cuda.current_stream(self.device).cuda_stream
                )
        except (cp.cuda.runtime.CUDARuntimeError, RuntimeError) as e:
            raise DeviceQueryError("cudaSetDevice", str(e)) from e

        try:
            with self._cupy_device:
                self._kernel = cp.RawKernel(VECTOR_ADD_SOURCE, VECTOR_ADD_NAME)
                self._kernel.compile()
        except (CompileException, cp.cuda.driver.CUDADriverError) as e:
            raise DeviceQueryError("nvrtcCompileProgram", str(e)) from e

    def device_properties(self, device_index: int) -> dict:
        try:
            count = cp.cuda.runtime.getDeviceCount()
            if not 0 <= device_index < count:
                raise DeviceQueryError(
                    "cudaGetDeviceProperties",
                    f"invalid device ordinal {device_index} ({count} device(s) present)",
                )
            return cp.cuda.runtime.getDeviceProperties(device_index)
        except cp.cuda.runtime.CUDARuntimeError as e:
            raise DeviceQueryError("cudaGetDeviceProperties", str(e)) from e

    def alloc_host(self, n: int, init_count: int = 0) -> torch.Tensor:
        try:
            host = torch.empty(n, dtype=torch.float32)
        except RuntimeError as e:
            raise HostAllocationError("malloc", str(e)) from e
        if init_count:
            host[:init_count].uniform_(generator=self._generator)
        return host

    def alloc_device(self, n: int) -> torch.Tensor:
        try:
            return torch.empty(n, dtype=torch.float32, device=self.device)
        except RuntimeError as e:
            raise DeviceAllocationError("cudaMalloc", str(e)) from e

    def upload(self, device_buffer: torch.Tensor, host_buffer: torch.Tensor) -> None:
        try:
            device_buffer.copy_(host_buffer)
        except RuntimeError as e:
            raise TransferError("cudaMemcpy HostToDevice", str(e), direction="upload") from e

    def download(self, host_buffer: torch.Tensor, device_buffer: torch.Tensor) -> None:
        try:
            host_buffer.copy_(device_buffer)
        except RuntimeError as e:
            raise TransferError("cudaMemcpy DeviceToHost", str(e), direction="download") from e

    def launch_vector_add(
        self,
        blocks: int,
        threads_per_block: int,
        a: torch.Tensor,
        b: torch.Tensor,
        out: torch.Tensor,
        n: int,
    ) -> None:
        with self._cupy_device, self._stream:
            args = (cp.asarray(a), cp.asarray(b), cp.asarray(out), np.int32(n))
            try:
                self._kernel((blocks,), (threads_per_block,), args)
            except cp.cuda.driver.CUDADriverError as e:
                raise LaunchRejected("kernel launch", str(e)) from e

    def synchronize(self) -> None:
        try:
            torch.cuda.synchronize(self.device)
        except RuntimeError as e:
            raise ExecutionFailed("cudaDeviceSynchronize", str(e)) from e

    def timer(self) -> EventTimer:
        with torch.cuda.device(self.device):
            return EventTimer(self.device)

    def release(self, resource) -> None:
        # Tensors and events are returned to torch when the last reference
        # drops; the caching allocator hands the blocks to the next candidate.
        pass
