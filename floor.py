from __future__ import annotations
from typing import Any, Dict, Mapping, Optional

import numpy as np
from numpy.typing import NDArray

from parser import Address
from values import INVALID_ADDRESS, TILE_EMPTY, HRMRuntimeError, Value


class Floor:
    """The tile store: ``size`` slots, each empty (None) or holding a Value."""

    def __init__(self, size: int, layout: Optional[Mapping[int, Value]] = None) -> None:
        if size < 0:
            raise ValueError(f"Floor size must not be negative, got {size}")
        self.size = size
        self.tiles: NDArray[Any] = np.empty(size, dtype=object)
        for index, value in (layout or {}).items():
            self.write(index, value)

    def __len__(self) -> int:
        return self.size

    def _check_index(self, index: int) -> None:
        if not 0 <= index < self.size:
            raise HRMRuntimeError(INVALID_ADDRESS, f"Tile {index} is outside the floor [0, {self.size})")

    def peek(self, index: int) -> Optional[Value]:
        self._check_index(index)
        return self.tiles[index]

    def read(self, index: int) -> Value:
        value = self.peek(index)
        if value is None:
            raise HRMRuntimeError(TILE_EMPTY, f"Tile {index} has never been written")
        return value

    def write(self, index: int, value: Value) -> None:
        self._check_index(index)
        self.tiles[index] = value

    def resolve(self, address: Address) -> int:
        """Turn an operand address into a tile index using the current floor."""
        if not address.indirect:
            self._check_index(address.tile)
            return address.tile
        pointer = self.peek(address.tile)
        if pointer is None:
            raise HRMRuntimeError(TILE_EMPTY, f"Pointer tile {address.tile} has never been written")
        if not pointer.is_number:
            raise HRMRuntimeError(
                INVALID_ADDRESS,
                f"Pointer tile {address.tile} holds letter '{pointer.value}', not an address",
            )
        self._check_index(pointer.value)
        return pointer.value

    def snapshot(self) -> Dict[int, Value]:
        written = np.array([tile is not None for tile in self.tiles], dtype=bool)
        return {int(i): self.tiles[i] for i in np.flatnonzero(written)}
