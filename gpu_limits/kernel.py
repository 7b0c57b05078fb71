import numpy as np

VECTOR_ADD_NAME = "vector_add"

VECTOR_ADD_SOURCE = r"""
extern "C" __global__
void vector_add(const float* a, const float* b, float* out, int n) {
    long long i = (long long)blockIdx.x * blockDim.x + threadIdx.x;
    if (i < n) {
        out[i] = a[i] + b[i];
    }
}
"""


def covered_elements(n: int, blocks: int, threads_per_block: int) -> int:
    return min(n, blocks * threads_per_block)


def blocks_to_cover(n: int, threads_per_block: int) -> int:
    return (n + threads_per_block - 1) // threads_per_block


def reference_vector_add(
    a: np.ndarray,
    b: np.ndarray,
    out: np.ndarray,
    n: int,
    blocks: int,
    threads_per_block: int,
) -> int:
    """Host-side equivalent of the CUDA kernel, launch geometry included.

    Only indices reached by some thread of the grid are written; everything
    past `n` or past the grid's coverage is left untouched. Returns the number
    of elements written.
    """
    count = covered_elements(n, blocks, threads_per_block)
    np.add(a[:count], b[:count], out=out[:count])
    return count
