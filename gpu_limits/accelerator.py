import logging
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)


class Accelerator(ABC):
    """Explicit handle on one device and the runtime operations the probe uses.

    Every method raises a ProbeError subclass on failure; library exceptions
    never leak past an implementation.
    """

    device_index: int

    @abstractmethod
    def device_properties(self, device_index: int) -> dict:
        ...

    @abstractmethod
    def alloc_host(self, n: int, init_count: int = 0):
        """Allocate `n` float32 host elements, randomizing the first `init_count`."""

    @abstractmethod
    def alloc_device(self, n: int):
        ...

    @abstractmethod
    def upload(self, device_buffer, host_buffer) -> None:
        ...

    @abstractmethod
    def download(self, host_buffer, device_buffer) -> None:
        ...

    @abstractmethod
    def launch_vector_add(self, blocks: int, threads_per_block: int, a, b, out, n: int) -> None:
        ...

    @abstractmethod
    def synchronize(self) -> None:
        ...

    @abstractmethod
    def timer(self):
        """Return a context manager timing the device work issued inside it.

        The returned object exposes `elapsed_ms()`, which waits for the stop
        timestamp before reading it.
        """

    @abstractmethod
    def release(self, resource) -> None:
        ...

    def scope(self) -> "BufferScope":
        return BufferScope(self)


class BufferScope:
    """Per-candidate resource owner.

    Buffers and timers acquired through the scope are handed to
    `Accelerator.release` when the `with` block exits, on the failure paths
    as well as the normal one. The scope drops its own references; on the
    CUDA backend a tensor goes back to torch's caching allocator once the
    per-candidate function that bound it returns, so each candidate runs in
    its own function frame.
    """

    def __init__(self, accelerator: Accelerator):
        self.accelerator = accelerator
        self._held = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def host(self, n: int, init_count: int = 0):
        return self._track(self.accelerator.alloc_host(n, init_count))

    def device(self, n: int):
        return self._track(self.accelerator.alloc_device(n))

    def timer(self):
        return self._track(self.accelerator.timer())

    def close(self) -> None:
        released = len(self._held)
        while self._held:
            self.accelerator.release(self._held.pop())
        if released:
            logger.debug("released %d per-candidate resources", released)

    def _track(self, resource):
        self._held.append(resource)
        return resource
