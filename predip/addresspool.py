from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from typing import Iterator, Union

from .errors import ConfigurationError

Address = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


def parse_address(value: str | Address) -> Address:
    if isinstance(value, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
        return value
    try:
        return ipaddress.ip_address(str(value).strip())
    except ValueError as e:
        raise ConfigurationError(f"Invalid address {value!r}: {e}") from e


@dataclass(frozen=True)
class AddressPool:
    """Contiguous address range ``[start, end)``.

    ``end`` is a sentinel: the successor walk stops one step before it, so the
    final address of the declared range is never issued.
    """

    start: Address
    end: Address

    def __post_init__(self) -> None:
        if self.start.version != self.end.version:
            raise ConfigurationError(f"Mixed address families in pool {self.start} - {self.end}")
        if self.end < self.start:
            raise ConfigurationError(f"Pool end {self.end} is before start {self.start}")

    @classmethod
    def from_strings(cls, start: str, end: str) -> "AddressPool":
        return cls(parse_address(start), parse_address(end))

    def next(self, addr: Address) -> Address:
        return addr + 1

    def contains(self, addr: str | Address) -> bool:
        a = parse_address(addr)
        if a.version != self.start.version:
            return False
        return self.start <= a < self.end

    def __iter__(self) -> Iterator[Address]:
        addr = self.start
        while addr != self.end:
            yield addr
            addr = self.next(addr)

    @property
    def size(self) -> int:
        return int(self.end) - int(self.start)

    def __str__(self) -> str:
        return f"[{self.start}, {self.end})"
