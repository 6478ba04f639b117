"""Outcome variants for best-effort side effects.

Cart merges and backend logouts may fail without failing the request that
triggered them. Callers report ``Degraded`` for partial failures and ``Err``
when the side effect failed outright, instead of raising.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class Ok:
    status: str = "ok"


@dataclass(frozen=True)
class Degraded:
    reason: str
    status: str = "degraded"


@dataclass(frozen=True)
class Err:
    code: str
    message: str
    status: str = "error"


Outcome = Union[Ok, Degraded, Err]
