"""Dialect registry: placeholder style and driver family per target database."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class DriverFamily(Enum):
    PYODBC = "PYODBC"
    ORACLEDB = "ORACLEDB"
    SQLITE = "SQLITE"


@dataclass(frozen=True)
class Dialect:
    name: str
    driver: DriverFamily
    paramstyle: str  # "qmark" (?) or "numeric" (:1)
    default_port: int | None = None

    def placeholders(self, count: int, start: int = 1) -> list[str]:
        """Return ``count`` bind placeholders, numbered from ``start`` where needed."""
        if self.paramstyle == "numeric":
            return [f":{i}" for i in range(start, start + count)]
        if self.paramstyle == "qmark":
            return ["?"] * count
        raise ValueError(f"Unsupported paramstyle for {self.name}: {self.paramstyle}")


# --- Dialect Registry ---
_DIALECTS: dict[str, Dialect] = {
    "POSTGRESQL": Dialect(
        name="postgresql",
        driver=DriverFamily.PYODBC,
        paramstyle="qmark",
        default_port=5432,
    ),
    "SQLSERVER": Dialect(
        name="sqlserver",
        driver=DriverFamily.PYODBC,
        paramstyle="qmark",
        default_port=1433,
    ),
    "ORACLE": Dialect(
        name="oracle",
        driver=DriverFamily.ORACLEDB,
        paramstyle="numeric",
        default_port=1521,
    ),
    "SQLITE": Dialect(
        name="sqlite",
        driver=DriverFamily.SQLITE,
        paramstyle="qmark",
    ),
}


def get_dialect(name: str) -> Dialect:
    key = name.upper()
    if key not in _DIALECTS:
        raise ValueError(
            f"Unknown dialect: {name}. Available: {[d.name for d in _DIALECTS.values()]}"
        )
    return _DIALECTS[key]


def available_dialects() -> list[str]:
    return sorted(d.name for d in _DIALECTS.values())
