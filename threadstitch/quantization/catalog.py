"""Thread colours and vendor catalogs."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from threadstitch.utils.color_model import RGB, rgb_to_lab


@dataclass(frozen=True)
class ThreadColor:
    name: str
    code: str
    red: int
    green: int
    blue: int
    catalog: str
    # How well this thread matched the colour it was chosen for (0..100).
    percentage: float = 100.0

    @property
    def rgb(self) -> RGB:
        return self.red, self.green, self.blue

    @property
    def key(self) -> Tuple[str, str]:
        # codes are only unique within one catalog
        return self.catalog, self.code

    @property
    def lab(self) -> np.ndarray:
        return rgb_to_lab(self.rgb)

    @property
    def hex(self) -> str:
        return "#{:02X}{:02X}{:02X}".format(self.red, self.green, self.blue)

    def with_percentage(self, percentage: float) -> "ThreadColor":
        return replace(self, percentage=float(percentage))

    def __str__(self) -> str:
        return f"{self.catalog} ({self.code}) {self.percentage:.1f}%"


@dataclass(frozen=True)
class ThreadCatalog:
    """Ordered list of threads from one vendor line."""

    name: str
    colors: Tuple[ThreadColor, ...]
    _rgb: np.ndarray = field(init=False, repr=False, compare=False)
    _lab: np.ndarray = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        colors = tuple(self.colors)
        object.__setattr__(self, "colors", colors)
        rgb = np.array([c.rgb for c in colors], dtype=np.float64).reshape(-1, 3)
        object.__setattr__(self, "_rgb", rgb)
        object.__setattr__(self, "_lab", rgb_to_lab(rgb) if len(colors) else np.zeros((0, 3)))

    @classmethod
    def from_records(cls, name: str, records: Iterable[Mapping[str, Any]]) -> "ThreadCatalog":
        """Build a catalog from ``{"code", "name", "rgb": [r, g, b]}`` records."""

        colors: List[ThreadColor] = []
        for rec in records:
            if "rgb" in rec:
                r, g, b = (int(v) for v in rec["rgb"])
            else:
                r, g, b = int(rec["red"]), int(rec["green"]), int(rec["blue"])
            colors.append(ThreadColor(str(rec.get("name", "")), str(rec["code"]), r, g, b, name))
        return cls(name, tuple(colors))

    @property
    def rgb_array(self) -> np.ndarray:
        return self._rgb

    @property
    def lab_array(self) -> np.ndarray:
        return self._lab

    def find_by_code(self, code: str) -> Optional[ThreadColor]:
        for color in self.colors:
            if color.code == code:
                return color
        return None

    def __len__(self) -> int:
        return len(self.colors)

    def __iter__(self):
        return iter(self.colors)


def combined(catalogs: Sequence[ThreadCatalog]) -> Tuple[List[ThreadColor], np.ndarray, np.ndarray]:
    """Flatten several catalogs into one list plus RGB and LAB matrices."""

    colors: List[ThreadColor] = []
    rgbs: List[np.ndarray] = []
    labs: List[np.ndarray] = []
    for catalog in catalogs:
        colors.extend(catalog.colors)
        rgbs.append(catalog.rgb_array)
        labs.append(catalog.lab_array)
    if not colors:
        return [], np.zeros((0, 3)), np.zeros((0, 3))
    return colors, np.concatenate(rgbs), np.concatenate(labs)


__all__ = ["ThreadCatalog", "ThreadColor", "combined"]
