from __future__ import annotations
from typing import NamedTuple

import numpy as np


class Vec3(NamedTuple):
    """
    Immutable 3-vector (x, y, z).

    Used for the vertex position and momentum direction. There is no
    per-component mutator; build a new Vec3 to change a vector.
    """
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

    @classmethod
    def of(cls, x, y, z) -> "Vec3":
        return cls(float(x), float(y), float(z))

    def as_array(self) -> np.ndarray:
        return np.array(self, dtype=np.float64)


ZERO = Vec3(0.0, 0.0, 0.0)
