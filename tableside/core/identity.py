from __future__ import annotations

from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class Staff:
    user_id: int


@dataclass(frozen=True)
class Customer:
    device_id: str


# Who placed an order: exactly one of a staff account or a diner device.
Attribution = Union[Staff, Customer]
