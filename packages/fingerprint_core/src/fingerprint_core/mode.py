from __future__ import annotations

from enum import Enum


class HashMode(str, Enum):
    STRICT = "STRICT"
    LAX = "LAX"
