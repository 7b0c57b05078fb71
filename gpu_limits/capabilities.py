from dataclasses import dataclass

from .errors import DeviceQueryError

REQUIRED_PROPERTIES = (
    "name",
    "major",
    "minor",
    "maxThreadsPerBlock",
    "maxGridSize",
    "warpSize",
    "multiProcessorCount",
    "maxThreadsPerMultiProcessor",
    "totalGlobalMem",
)


@dataclass(frozen=True)
class DeviceCapabilities:
    name: str
    compute_capability: tuple
    max_threads_per_block: int
    max_grid_dim: tuple
    warp_size: int
    multiprocessor_count: int
    max_threads_per_multiprocessor: int
    total_global_memory_bytes: int

    @property
    def total_global_memory_gb(self) -> float:
        return self.total_global_memory_bytes / 1024 / 1024 / 1024


def capabilities_from_properties(props: dict) -> DeviceCapabilities:
    missing = [key for key in REQUIRED_PROPERTIES if key not in props]
    if missing:
        raise DeviceQueryError(
            "cudaGetDeviceProperties", f"missing properties: {', '.join(missing)}"
        )

    name = props["name"]
    if isinstance(name, bytes):
        name = name.decode(errors="replace")

    grid = tuple(int(dim) for dim in props["maxGridSize"])
    if len(grid) != 3:
        raise DeviceQueryError(
            "cudaGetDeviceProperties", f"expected 3 grid dimensions, got {len(grid)}"
        )

    return DeviceCapabilities(
        name=name.rstrip("\x00"),
        compute_capability=(int(props["major"]), int(props["minor"])),
        max_threads_per_block=int(props["maxThreadsPerBlock"]),
        max_grid_dim=grid,
        warp_size=int(props["warpSize"]),
        multiprocessor_count=int(props["multiProcessorCount"]),
        max_threads_per_multiprocessor=int(props["maxThreadsPerMultiProcessor"]),
        total_global_memory_bytes=int(props["totalGlobalMem"]),
    )


def read_capabilities(accelerator, device_index: int = 0) -> DeviceCapabilities:
    """Query the static limits of one device.

    Raises DeviceQueryError when the runtime has no such device or cannot
    report its properties. Nothing is allocated on the device.
    """
    props = accelerator.device_properties(device_index)
    return capabilities_from_properties(props)
