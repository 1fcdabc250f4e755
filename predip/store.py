from __future__ import annotations

import copy
import json
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from threading import RLock
from typing import Any, Callable, Iterator, Protocol

from kubernetes import client, config
from kubernetes.client.rest import ApiException

from .errors import ConflictError, NotFoundError
from .members import Member, OwnerReference
from .settings import settings

NAD_GROUP = "k8s.cni.cncf.io"
NAD_VERSION = "v1"
NAD_PLURAL = "network-attachment-definitions"


@dataclass(frozen=True)
class Record:
    """Namespaced string table with an opaque version (a ConfigMap in Kubernetes)."""

    name: str
    namespace: str
    data: dict[str, str] = field(default_factory=dict)
    labels: dict[str, str] = field(default_factory=dict)
    version: str | None = None


class ObjectStore(Protocol):
    """Get/create/update with version-checked writes and not-found signaling."""

    def get_record(self, namespace: str, name: str) -> Record: ...

    def create_record(self, record: Record) -> Record: ...

    def update_record(self, record: Record) -> Record: ...

    def get_member(self, namespace: str, name: str) -> Member: ...

    def update_member(self, member: Member) -> Member: ...

    def list_members(self, namespace: str) -> list[Member]: ...

    def get_network_attachment(self, namespace: str, name: str) -> str: ...


class InMemoryObjectStore:
    """In-process store.

    Writes can be made to fail with ``ConflictError`` through
    ``inject_conflict``; the optional ``mutate`` callback stands in for the
    concurrent writer and may change the stored object before the version bump.
    """

    def __init__(self) -> None:
        self.lock = RLock()
        self._records: dict[tuple[str, str], Record] = {}
        self._members: dict[tuple[str, str], Member] = {}
        self._attachments: dict[tuple[str, str], str] = {}
        self._counter = 0
        self.writes: dict[str, int] = {"record": 0, "member": 0}
        self._conflicts: dict[str, set[int]] = {"record": set(), "member": set()}
        self._mutators: dict[str, Callable[[Any], Any] | None] = {"record": None, "member": None}

    def _next_version(self) -> str:
        self._counter += 1
        return str(self._counter)

    def inject_conflict(self, kind: str, *writes: int, mutate: Callable[[Any], Any] | None = None) -> None:
        """Fail the given write numbers (1-based, counted per kind) with a conflict."""
        with self.lock:
            self._conflicts[kind].update(writes)
            self._mutators[kind] = mutate

    def _maybe_conflict(self, kind: str, key: tuple[str, str], table: dict[tuple[str, str], Any]) -> None:
        self.writes[kind] += 1
        if self.writes[kind] not in self._conflicts[kind]:
            return
        current = table.get(key)
        if current is not None:
            mutate = self._mutators[kind]
            if mutate is not None:
                current = mutate(current)
            table[key] = replace(current, version=self._next_version())
        raise ConflictError(f"{kind} {key[0]}/{key[1]} was modified concurrently (injected)")

    # Records

    def get_record(self, namespace: str, name: str) -> Record:
        with self.lock:
            rec = self._records.get((namespace, name))
            if rec is None:
                raise NotFoundError(f"record {namespace}/{name} not found")
            return copy.deepcopy(rec)

    def create_record(self, record: Record) -> Record:
        key = (record.namespace, record.name)
        with self.lock:
            self._maybe_conflict("record", key, self._records)
            if key in self._records:
                raise ConflictError(f"record {key[0]}/{key[1]} already exists")
            stored = replace(copy.deepcopy(record), version=self._next_version())
            self._records[key] = stored
            return copy.deepcopy(stored)

    def update_record(self, record: Record) -> Record:
        key = (record.namespace, record.name)
        with self.lock:
            self._maybe_conflict("record", key, self._records)
            current = self._records.get(key)
            if current is None:
                raise NotFoundError(f"record {key[0]}/{key[1]} not found")
            if current.version != record.version:
                raise ConflictError(
                    f"record {key[0]}/{key[1]} is at version {current.version}, not {record.version}"
                )
            stored = replace(copy.deepcopy(record), version=self._next_version())
            self._records[key] = stored
            return copy.deepcopy(stored)

    # Members

    def put_member(self, member: Member) -> Member:
        """Create or replace a member unconditionally (plays the role of the watch source)."""
        with self.lock:
            stored = replace(member, version=self._next_version())
            self._members[(member.namespace, member.name)] = stored
            return stored

    def delete_member(self, namespace: str, name: str) -> None:
        with self.lock:
            self._members.pop((namespace, name), None)

    def get_member(self, namespace: str, name: str) -> Member:
        with self.lock:
            m = self._members.get((namespace, name))
            if m is None:
                raise NotFoundError(f"member {namespace}/{name} not found")
            return copy.deepcopy(m)

    def update_member(self, member: Member) -> Member:
        key = (member.namespace, member.name)
        with self.lock:
            self._maybe_conflict("member", key, self._members)
            current = self._members.get(key)
            if current is None:
                raise NotFoundError(f"member {key[0]}/{key[1]} not found")
            if current.version != member.version:
                raise ConflictError(
                    f"member {key[0]}/{key[1]} is at version {current.version}, not {member.version}"
                )
            stored = replace(copy.deepcopy(member), version=self._next_version())
            self._members[key] = stored
            return copy.deepcopy(stored)

    def list_members(self, namespace: str) -> list[Member]:
        with self.lock:
            return [copy.deepcopy(m) for (ns, _), m in sorted(self._members.items()) if ns == namespace]

    # Network attachments

    def put_network_attachment(self, namespace: str, name: str, config: str | dict[str, Any]) -> None:
        if not isinstance(config, str):
            config = json.dumps(config)
        with self.lock:
            self._attachments[(namespace, name)] = config

    def get_network_attachment(self, namespace: str, name: str) -> str:
        with self.lock:
            cfg = self._attachments.get((namespace, name))
            if cfg is None:
                raise NotFoundError(f"network attachment {namespace}/{name} not found")
            return cfg


def member_from_pod(pod: Any) -> Member:
    meta = pod.metadata
    owners = tuple(OwnerReference(kind=o.kind or "", name=o.name or "") for o in meta.owner_references or [])
    deleted = meta.deletion_timestamp
    return Member(
        name=meta.name or "",
        namespace=meta.namespace or "",
        labels=dict(meta.labels or {}),
        annotations=dict(meta.annotations or {}),
        owner_references=owners,
        phase=(pod.status.phase if pod.status and pod.status.phase else "Pending"),
        deletion_timestamp=deleted.isoformat() if hasattr(deleted, "isoformat") else deleted,
        version=meta.resource_version,
    )


def record_from_config_map(cm: Any) -> Record:
    meta = cm.metadata
    return Record(
        name=meta.name or "",
        namespace=meta.namespace or "",
        data=dict(cm.data or {}),
        labels=dict(meta.labels or {}),
        version=meta.resource_version,
    )


def record_to_config_map(record: Record) -> client.V1ConfigMap:
    return client.V1ConfigMap(
        api_version="v1",
        kind="ConfigMap",
        metadata=client.V1ObjectMeta(
            name=record.name,
            namespace=record.namespace,
            labels=dict(record.labels),
            resource_version=record.version,
        ),
        data=dict(record.data),
    )


@contextmanager
def _api_errors(what: str) -> Iterator[None]:
    """Translate 404/409 from the API server; every other ApiException propagates."""
    try:
        yield
    except ApiException as e:
        if e.status == 404:
            raise NotFoundError(f"{what} not found") from e
        if e.status == 409:
            raise ConflictError(f"{what}: {e.reason}") from e
        raise


def load_kube_config() -> None:
    try:
        config.load_incluster_config()
    except config.ConfigException:
        # Outside a pod: fall back to ~/.kube/config or $KUBECONFIG.
        config.load_kube_config()


class KubeObjectStore:
    """ObjectStore over the Kubernetes API.

    Records are ConfigMaps, members are Pods, network attachments are
    ``NetworkAttachmentDefinition`` custom objects. ``resource_version``
    carries the optimistic-concurrency version.
    """

    def __init__(
        self,
        core_api: client.CoreV1Api | None = None,
        custom_api: client.CustomObjectsApi | None = None,
        timeout_s: float | None = None,
    ) -> None:
        if core_api is None or custom_api is None:
            load_kube_config()
        self.core_api = core_api or client.CoreV1Api()
        self.custom_api = custom_api or client.CustomObjectsApi()
        self.timeout_s = timeout_s if timeout_s is not None else settings.kube_timeout_s

    def get_record(self, namespace: str, name: str) -> Record:
        with _api_errors(f"record {namespace}/{name}"):
            cm = self.core_api.read_namespaced_config_map(name, namespace, _request_timeout=self.timeout_s)
        return record_from_config_map(cm)

    def create_record(self, record: Record) -> Record:
        body = record_to_config_map(replace(record, version=None))
        with _api_errors(f"record {record.namespace}/{record.name}"):
            cm = self.core_api.create_namespaced_config_map(record.namespace, body, _request_timeout=self.timeout_s)
        return record_from_config_map(cm)

    def update_record(self, record: Record) -> Record:
        # replace carries resource_version, so the API server rejects stale writes with 409.
        with _api_errors(f"record {record.namespace}/{record.name}"):
            cm = self.core_api.replace_namespaced_config_map(
                record.name, record.namespace, record_to_config_map(record), _request_timeout=self.timeout_s
            )
        return record_from_config_map(cm)

    def get_member(self, namespace: str, name: str) -> Member:
        with _api_errors(f"member {namespace}/{name}"):
            pod = self.core_api.read_namespaced_pod(name, namespace, _request_timeout=self.timeout_s)
        return member_from_pod(pod)

    def update_member(self, member: Member) -> Member:
        # Only annotations are ours to write; resourceVersion in the patch is a precondition.
        patch = {"metadata": {"annotations": dict(member.annotations), "resourceVersion": member.version}}
        with _api_errors(f"member {member.namespace}/{member.name}"):
            pod = self.core_api.patch_namespaced_pod(member.name, member.namespace, patch, _request_timeout=self.timeout_s)
        return member_from_pod(pod)

    def list_members(self, namespace: str) -> list[Member]:
        with _api_errors(f"members in {namespace}"):
            pods = self.core_api.list_namespaced_pod(namespace, _request_timeout=self.timeout_s)
        return [member_from_pod(p) for p in pods.items or []]

    def get_network_attachment(self, namespace: str, name: str) -> str:
        with _api_errors(f"network attachment {namespace}/{name}"):
            obj = self.custom_api.get_namespaced_custom_object(
                group=NAD_GROUP,
                version=NAD_VERSION,
                namespace=namespace,
                plural=NAD_PLURAL,
                name=name,
                _request_timeout=self.timeout_s,
            )
        return (obj.get("spec") or {}).get("config", "")


def build_store() -> ObjectStore:
    if settings.store_backend == "kube":
        return KubeObjectStore()
    return InMemoryObjectStore()
