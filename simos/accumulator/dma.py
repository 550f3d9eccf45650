"""Direct memory transfer between storage devices."""

from __future__ import annotations

from typing import MutableSequence, Sequence


def initiate_dma(source: Sequence[int], destination: MutableSequence[int], size: int) -> None:
    """Copy the first `size` words of `source` over those of `destination`."""
    if size <= 0:
        return
    if size > len(source) or size > len(destination):
        raise ValueError(
            f"transfer of {size} words exceeds source ({len(source)}) "
            f"or destination ({len(destination)})"
        )
    destination[:size] = source[:size]