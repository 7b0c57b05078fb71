from dataclasses import dataclass

from .capabilities import DeviceCapabilities


@dataclass(frozen=True)
class TheoreticalLimits:
    max_threads_total: int
    max_concurrent_threads: int


def theoretical_factors(caps: DeviceCapabilities) -> tuple:
    return (caps.max_threads_per_block, *caps.max_grid_dim)


def compute_theoretical_limits(caps: DeviceCapabilities) -> TheoreticalLimits:
    # Python ints are unbounded: 1024 * (2**31 - 1) * 65535**2 overflows 64 bits.
    total = 1
    for factor in theoretical_factors(caps):
        total *= factor
    return TheoreticalLimits(
        max_threads_total=total,
        max_concurrent_threads=caps.multiprocessor_count * caps.max_threads_per_multiprocessor,
    )


def multiplication_chain(factors) -> list[str]:
    """Render a product as successive partial products.

    [4, 3, 2] -> ["4 × 3 × 2", "= 12 × 2", "= 24"]
    """
    factors = list(factors)
    if not factors:
        return ["= 1"]
    lines = [" × ".join(str(f) for f in factors)]
    partial = factors[0]
    for i in range(1, len(factors)):
        partial *= factors[i]
        lines.append("= " + " × ".join(str(f) for f in [partial, *factors[i + 1:]]))
    return lines
