"""Magnetic material definitions and a small material database.

A material contributes its reluctivity ``nu = 1 / mu`` to the stiffness
operator and an optional source current density ``J`` to the load vector.
Linear materials carry a constant ``nu``; nonlinear (ferromagnetic) materials
additionally carry a reluctivity curve ``nu(|B|)`` derived from a B-H table.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Callable, Optional, Sequence

import numpy as np
from scipy.interpolate import PchipInterpolator

MU0 = 4.0e-7 * np.pi  # vacuum permeability [H/m]


# ---------------------------------------------------------------------------
# B-H curve
# ---------------------------------------------------------------------------
class BHCurve:
    """Monotone B-H curve with a reluctivity lookup ``nu(|B|) = H(|B|) / |B|``.

    The table is interpolated with a shape-preserving PCHIP spline on B -> H.
    Below the first non-zero sample the secant reluctivity of the first
    segment is used; above the last sample the curve continues with the
    slope of free space, so deep saturation tends toward air.

    Parameters
    ----------
    b_values : sequence of float
        Flux density samples [T], strictly increasing, non-negative.
    h_values : sequence of float
        Field strength samples [A/m], non-decreasing.

    Raises
    ------
    ValueError
        If the table is too short, mismatched, or not monotone.
    """

    def __init__(self, b_values: Sequence[float], h_values: Sequence[float]) -> None:
        b = np.asarray(b_values, dtype=np.float64)
        h = np.asarray(h_values, dtype=np.float64)
        if b.ndim != 1 or b.shape != h.shape:
            raise ValueError("B and H tables must be 1-D arrays of equal length.")
        if b[0] < 0.0 or h[0] < 0.0:
            raise ValueError("B-H tables must start at non-negative values.")
        if b[0] > 0.0:
            b = np.concatenate([[0.0], b])
            h = np.concatenate([[0.0], h])
        if b.size < 2:
            raise ValueError("A B-H curve needs at least one non-zero sample.")
        if np.any(np.diff(b) <= 0.0):
            raise ValueError("B samples must be strictly increasing.")
        if np.any(np.diff(h) < 0.0):
            raise ValueError("H samples must be non-decreasing.")

        self._b = b
        self._h = h
        self._b_knee = float(b[1])
        self._b_max = float(b[-1])
        self._h_max = float(h[-1])
        self._h_of_b = PchipInterpolator(b, h, extrapolate=False)
        self.initial_reluctivity: float = float(h[1] / b[1])

    def field_strength(self, flux_density: float) -> float:
        """H [A/m] for a flux density magnitude [T]."""
        b = abs(flux_density)
        if b > self._b_max:
            return self._h_max + (b - self._b_max) / MU0
        return float(self._h_of_b(b))

    def reluctivity(self, flux_density: float) -> float:
        """Secant reluctivity ``H / B`` [m/H] at ``|B|``."""
        b = abs(flux_density)
        if b <= self._b_knee:
            return self.initial_reluctivity
        return self.field_strength(b) / b

    __call__ = reluctivity

    @property
    def b_values(self) -> np.ndarray:
        return self._b.copy()

    @property
    def h_values(self) -> np.ndarray:
        return self._h.copy()

    def __repr__(self) -> str:
        return f"BHCurve(n_points={self._b.size}, b_max={self._b_max:.3f} T)"


# ---------------------------------------------------------------------------
# Material
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class Material:
    """Magnetic material of a mesh region.

    ``nu`` is the constant reluctivity of a linear material, or the initial
    (low-field) reluctivity of a nonlinear one, which is what the linear
    bootstrap solve uses.
    """
    name: str
    nu: float
    current_density: float = 0.0
    reluctivity_curve: Optional[Callable[[float], float]] = None

    @property
    def is_linear(self) -> bool:
        return self.reluctivity_curve is None

    def coefficient(self, flux_density: float) -> float:
        """Reluctivity at the given flux density magnitude."""
        if self.reluctivity_curve is None:
            return self.nu
        return float(self.reluctivity_curve(flux_density))

    def linearized(self) -> "Material":
        """The same material with its reluctivity frozen at ``nu``."""
        if self.is_linear:
            return self
        return replace(self, reluctivity_curve=None)

    def with_current_density(self, current_density: float) -> "Material":
        return replace(self, current_density=current_density)

    @classmethod
    def constant(
        cls,
        name: str,
        mu_r: float = 1.0,
        current_density: float = 0.0,
    ) -> "Material":
        """Linear material from its relative permeability."""
        if mu_r <= 0.0:
            raise ValueError(f"mu_r must be positive, got {mu_r!r}")
        return cls(name=name, nu=1.0 / (MU0 * mu_r), current_density=current_density)

    @classmethod
    def from_bh_curve(
        cls,
        name: str,
        b_values: Sequence[float],
        h_values: Sequence[float],
        current_density: float = 0.0,
    ) -> "Material":
        """Nonlinear material from a B-H table."""
        curve = BHCurve(b_values, h_values)
        return cls(
            name=name,
            nu=curve.initial_reluctivity,
            current_density=current_density,
            reluctivity_curve=curve,
        )


# ---------------------------------------------------------------------------
# Material property database
# ---------------------------------------------------------------------------
# Keys:
#   mu_r      -- relative permeability of a linear material [-]
#   bh_curve  -- (B [T], H [A/m]) table of a nonlinear material
# ---------------------------------------------------------------------------

FEA_MATERIALS: dict[str, dict] = {
    "Air": {
        "mu_r": 1.0,
    },
    "Copper": {
        "mu_r": 0.999994,
    },
    "Soft Iron": {
        "mu_r": 1000.0,
    },
    "Steel 1010": {
        "bh_curve": (
            [0.2003, 0.3204, 0.40045, 0.50055, 0.5606, 0.7908, 0.931, 1.1014,
             1.2016, 1.302, 1.4028, 1.524, 1.626, 1.698, 1.73, 1.87, 1.99,
             2.04, 2.07, 2.095, 2.2],
            [238.7, 318.3, 358.1, 437.7, 477.5, 636.6, 795.8, 1114.1, 1273.2,
             1591.5, 2228.2, 3183.1, 4774.6, 6366.2, 7957.7, 15915.5, 31831.0,
             47746.5, 63662.0, 79577.5, 159155.0],
        ),
    },
}

_ALIASES: dict[str, str] = {
    "air": "Air",
    "vacuum": "Air",
    "copper": "Copper",
    "cu": "Copper",
    "soft iron": "Soft Iron",
    "iron": "Soft Iron",
    "steel 1010": "Steel 1010",
    "1010": "Steel 1010",
    "aisi 1010": "Steel 1010",
    "steel": "Steel 1010",
}


def get_material(name: str, current_density: float = 0.0) -> Optional[Material]:
    """Look up a material by name (case-insensitive, alias-aware).

    Parameters
    ----------
    name:
        Material name or alias, e.g. ``"Air"``, ``"cu"``, ``"steel"``.
    current_density:
        Source current density [A/m^2] assigned to the returned material.

    Returns
    -------
    Material or None
        A new ``Material`` instance, or ``None`` if the name is unknown.
    """
    key = name if name in FEA_MATERIALS else _ALIASES.get(name.lower().strip())
    if key is None:
        return None

    props = FEA_MATERIALS[key]
    if "bh_curve" in props:
        b_values, h_values = props["bh_curve"]
        return Material.from_bh_curve(key, b_values, h_values, current_density)
    return Material.constant(key, props["mu_r"], current_density)


def list_materials() -> list[str]:
    """Return a sorted list of canonical material names."""
    return sorted(FEA_MATERIALS.keys())
