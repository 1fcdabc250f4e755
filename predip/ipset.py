from __future__ import annotations

from typing import Iterable

from . import db
from .addresspool import AddressPool
from .allocation import AllocationStore, PoolKey
from .errors import NotFoundError, PoolExhausted
from .store import ObjectStore


def holder_key(ordinal: int) -> str:
    return f"pod_{int(ordinal)}"


class IPSetManager:
    """Allocates addresses of one named pool.

    Addresses recorded by sibling pools are skipped when allocating. That
    exclusion is advisory: the siblings are read before our own write and are
    not re-checked afterwards, so two pools allocating at the same moment can
    still hand out the same address.
    """

    def __init__(self, store: ObjectStore, set_name: str, namespace: str, siblings: Iterable[str] = ()):
        self.allocations = AllocationStore(store)
        self.key = PoolKey(set_name, namespace)
        self.siblings = [PoolKey(s, namespace) for s in siblings if s and s != set_name]

    @property
    def set_name(self) -> str:
        return self.key.name

    def _sibling_addresses(self) -> set[str]:
        taken: set[str] = set()
        for sib in self.siblings:
            try:
                table, _ = self.allocations.read(sib)
            except Exception as e:
                # Availability over the advisory invariant: an unreadable sibling excludes nothing.
                db.log_event("WARN", f"Sibling pool {sib} unreadable, not excluding its addresses: {type(e).__name__}: {e}", pool=self.set_name)
                continue
            taken.update(table.values())
        return taken

    def allocate_ip(self, pool: AddressPool, holder: str) -> str:
        """Return the address held by ``holder``, allocating one if needed.

        Raises ``PoolExhausted`` when every address of ``pool`` is taken and
        surfaces ``ConflictError`` from the record write to the caller.
        """
        table, version = self.allocations.read(self.key)
        if holder in table:
            return table[holder]

        excluded = set(table.values()) | self._sibling_addresses()
        chosen: str | None = None
        for addr in pool:
            if str(addr) not in excluded:
                chosen = str(addr)
                break
        if chosen is None:
            raise PoolExhausted(f"Pool {self.key} has no free address in {pool}")

        table[holder] = chosen
        self.allocations.write(self.key, table, version)
        db.log_event("INFO", f"Allocated {chosen} to {holder}", pool=self.set_name)
        return chosen

    def is_allocated(self, address: str) -> bool:
        try:
            table, _ = self.allocations.read(self.key)
        except Exception as e:
            db.log_event("WARN", f"Pool unreadable, reporting {address} as free: {type(e).__name__}: {e}", pool=self.set_name)
            return False
        return address in table.values()

    def release_ip(self, address: str) -> bool:
        """Remove the entry holding ``address``. Returns False when nothing was held."""
        table, version = self.allocations.read(self.key)
        for holder, existing in table.items():
            if existing == address:
                del table[holder]
                try:
                    self.allocations.write(self.key, table, version)
                except NotFoundError:
                    # Record removed out-of-band; nothing left to release.
                    return False
                db.log_event("INFO", f"Released {address} held by {holder}", pool=self.set_name)
                return True
        return False

    def snapshot(self) -> tuple[dict[str, str], str | None]:
        return self.allocations.read(self.key)
