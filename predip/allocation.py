from __future__ import annotations

from dataclasses import dataclass

from .errors import NotFoundError
from .store import ObjectStore, Record

IPSET_LABELS = {
    "app.kubernetes.io/name": "designate",
    "app.kubernetes.io/component": "ipset",
}


@dataclass(frozen=True)
class PoolKey:
    name: str
    namespace: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


class AllocationStore:
    """Read-modify-write access to one HolderKey -> address table per pool.

    No lock is held between ``read`` and ``write``; the version returned by
    ``read`` must be handed back to ``write``, which fails with
    ``ConflictError`` when the record moved on in the meantime.
    """

    def __init__(self, store: ObjectStore):
        self.store = store

    def read(self, key: PoolKey) -> tuple[dict[str, str], str | None]:
        try:
            rec = self.store.get_record(key.namespace, key.name)
        except NotFoundError:
            return {}, None
        return dict(rec.data), rec.version

    def write(self, key: PoolKey, table: dict[str, str], expected_version: str | None) -> str | None:
        rec = Record(
            name=key.name,
            namespace=key.namespace,
            data=dict(table),
            labels=dict(IPSET_LABELS),
            version=expected_version,
        )
        if expected_version is None:
            # Absent at read time; a concurrent creator makes this a conflict.
            saved = self.store.create_record(rec)
        else:
            saved = self.store.update_record(rec)
        return saved.version
