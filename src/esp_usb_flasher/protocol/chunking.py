"""Split a firmware image into fixed-size, 0xFF-padded flash blocks."""

from dataclasses import dataclass
from typing import Iterator

BLOCK_SIZE = 1024
ERASE_VALUE = 0xFF  # what unprogrammed NOR flash reads back as


@dataclass(frozen=True)
class FlashBlock:
    """One FLASH_DATA payload."""
    sequence: int
    data: bytes


class BlockPlan:
    """
    Lazy, restartable sequence of FlashBlocks over an image.

    Iterating again starts over from sequence 0. The source image is never
    modified; only the final short block is copied into a padded buffer.
    """

    def __init__(self, image: bytes, block_size: int = BLOCK_SIZE):
        if block_size <= 0:
            raise ValueError(f"block_size must be > 0, got {block_size}")
        self.image = image
        self.block_size = block_size

    def __len__(self) -> int:
        return (len(self.image) + self.block_size - 1) // self.block_size

    @property
    def padded_size(self) -> int:
        """Total bytes sent on the wire, padding included."""
        return len(self) * self.block_size

    @property
    def padding(self) -> int:
        return self.padded_size - len(self.image)

    def __iter__(self) -> Iterator[FlashBlock]:
        size = self.block_size
        for seq in range(len(self)):
            chunk = bytes(self.image[seq * size:(seq + 1) * size])
            if len(chunk) < size:
                chunk = chunk + bytes([ERASE_VALUE]) * (size - len(chunk))
            yield FlashBlock(sequence=seq, data=chunk)

    def __repr__(self) -> str:
        return f"BlockPlan(image={len(self.image)} bytes, block_size={self.block_size}, blocks={len(self)})"


def plan_blocks(image: bytes, block_size: int = BLOCK_SIZE) -> BlockPlan:
    """
    Plan the FLASH_DATA blocks for an image.

    Args:
        image: Firmware bytes
        block_size: Bytes per block (default 1024)

    Returns:
        BlockPlan yielding ceil(len(image) / block_size) blocks
    """
    return BlockPlan(image, block_size)
