from dataclasses import dataclass

import numpy as np

ELEMENT_SIZE_BYTES = 4
BUFFERS_PER_LAUNCH = 3

# The kernel indexes with a signed 32-bit `n`.
MAX_PROBLEM_SIZE = np.iinfo(np.int32).max

THREAD_CANDIDATES = (128, 256, 512, 768, 1024, 1536, 2048)

GRID_CANDIDATES = (
    1,
    1024,
    65535,
    65536,
    1 << 20,
    1 << 24,
    1 << 28,
    1 << 30,
    int(np.iinfo(np.int32).max),
    # 2**31 wrapped to int32, as an overflowed block count arrives upstream
    int(np.array([1 << 31], dtype=np.int64).astype(np.int32)[0]),
)

BLOCK_SWEEP_PROBLEM_SIZE = 4096
GRID_THREADS_PER_BLOCK = 1024
MEMORY_CEILING_BYTES = 2 * 1024 * 1024 * 1024
HOST_INIT_PREFIX = 1 << 20


@dataclass
class ProbeConfig:
    device_index: int = 0
    thread_candidates: tuple = THREAD_CANDIDATES
    block_sweep_problem_size: int = BLOCK_SWEEP_PROBLEM_SIZE
    grid_candidates: tuple = GRID_CANDIDATES
    grid_threads_per_block: int = GRID_THREADS_PER_BLOCK
    memory_ceiling_bytes: int = MEMORY_CEILING_BYTES
    host_init_prefix: int = HOST_INIT_PREFIX
    seed: int = 0
