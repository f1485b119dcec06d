from typing import Iterator, Tuple


def backward_block_ranges(
    head: int, chunk_size: int, max_lookback: int
) -> Iterator[Tuple[int, int]]:
    """
    Yield inclusive (from_block, to_block) windows walking back from head.

    Windows are newest-first, at most chunk_size blocks wide, and together cover
    at most max_lookback blocks (never below block 0). The caller stops early on
    a match; running out of windows means the lookback is exhausted.
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    floor = max(0, head - max_lookback + 1)
    to_block = head
    while to_block >= floor:
        from_block = max(floor, to_block - chunk_size + 1)
        yield from_block, to_block
        to_block = from_block - 1
