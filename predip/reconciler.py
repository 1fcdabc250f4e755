from __future__ import annotations

import time
from dataclasses import dataclass, replace
from enum import Enum
from threading import Thread
from typing import Callable, TypeVar

from . import db
from .alerts import pool_exhausted_alert
from .errors import AnnotationConflictExhausted, ConflictError, NotFoundError, PoolExhausted
from .ipset import IPSetManager, holder_key
from .members import Member, MemberClassifier, default_classifier, extract_ordinal, role_suffix
from .network import NetworkParametersProvider, multus_annotation, predictable_pool
from .settings import settings
from .store import ObjectStore

PREDICTABLE_IP_ANNOTATION = "designate.openstack.org/predictable-ip"
POD_INDEX_ANNOTATION = "designate.openstack.org/pod-index"
IPSET_NAME_ANNOTATION = "designate.openstack.org/ipset-name"
NETWORKS_ANNOTATION = "k8s.v1.cni.cncf.io/networks"

T = TypeVar("T")


class Action(str, Enum):
    IGNORE = "ignore"
    RELEASE = "release"
    SKIP_TERMINAL = "skip_terminal"
    UNCHANGED = "unchanged"
    ANNOTATE = "annotate"


def plan(member: Member | None, classifier: MemberClassifier = default_classifier) -> Action:
    """Decide what to do with a member snapshot. Pure; safe to call on replays."""
    if member is None or not classifier.is_managed(member):
        return Action.IGNORE
    if member.deleting:
        if member.annotations.get(PREDICTABLE_IP_ANNOTATION) and member.annotations.get(IPSET_NAME_ANNOTATION):
            return Action.RELEASE
        return Action.IGNORE
    if member.terminal:
        return Action.SKIP_TERMINAL
    if member.annotations.get(PREDICTABLE_IP_ANNOTATION):
        return Action.UNCHANGED
    return Action.ANNOTATE


def merge_annotations(existing: dict[str, str] | None, new: dict[str, str]) -> dict[str, str]:
    merged = dict(existing or {})
    merged.update(new)
    return merged


@dataclass(frozen=True)
class ReconcileResult:
    member: str
    outcome: str  # ignored|released|release_failed|terminal|unchanged|annotated
    address: str | None = None
    pool: str | None = None


class AnnotationReconciler:
    """Annotates DNS fleet members with a predictable address.

    Holds no state between reconciliations apart from its collaborators, so
    any number of events can be handled concurrently.
    """

    def __init__(
        self,
        store: ObjectStore,
        provider: NetworkParametersProvider,
        classifier: MemberClassifier = default_classifier,
        namespace: str | None = None,
        pool_namespace: str | None = None,
        network_attachment: str | None = None,
        pool_size: int | None = None,
        siblings: tuple[str, ...] | None = None,
        interface_name: str | None = None,
        max_retries: int | None = None,
        base_delay_s: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.provider = provider
        self.classifier = classifier
        self.namespace = namespace or settings.namespace
        self.pool_namespace = pool_namespace or self.namespace
        self.network_attachment = network_attachment or settings.network_attachment
        self.pool_size = pool_size if pool_size is not None else settings.pool_size
        self.siblings = siblings if siblings is not None else settings.sibling_pools
        self.interface_name = interface_name or settings.interface_name
        self.max_retries = max(1, int(max_retries if max_retries is not None else settings.annotation_max_retries))
        self.base_delay_s = base_delay_s if base_delay_s is not None else settings.annotation_base_delay_s
        self.sleep = sleep
        self._stop = False
        self._thr: Thread | None = None

    def pool_name(self, role: str) -> str:
        return f"designate-{self.network_attachment}-{role_suffix(role)}"

    def ipset(self, name: str) -> IPSetManager:
        return IPSetManager(self.store, name, self.pool_namespace, self.siblings)

    def ipset_for(self, member: Member) -> IPSetManager:
        """Pool of the member's role; the other roles' pools and the configured extras are its siblings."""
        role_pools = [self.pool_name(r) for r in self.classifier.roles]
        name = self.pool_name(self.classifier.role_of(member))
        return IPSetManager(self.store, name, self.pool_namespace, [*role_pools, *self.siblings])

    # Event handling

    def reconcile(self, namespace: str, name: str) -> ReconcileResult:
        try:
            member = self.store.get_member(namespace, name)
        except NotFoundError:
            db.log_event("INFO", "Member not found, ignoring since it must be deleted", member=name)
            return ReconcileResult(member=name, outcome="ignored")
        return self.reconcile_member(member)

    def reconcile_member(self, member: Member) -> ReconcileResult:
        action = plan(member, self.classifier)
        if action is Action.IGNORE:
            return ReconcileResult(member=member.name, outcome="ignored")
        if action is Action.RELEASE:
            return self._release(member)
        if action is Action.SKIP_TERMINAL:
            db.log_event("INFO", f"Member in terminal phase {member.phase}, not annotating", member=member.name)
            return ReconcileResult(member=member.name, outcome="terminal")
        if action is Action.UNCHANGED:
            return ReconcileResult(
                member=member.name,
                outcome="unchanged",
                address=member.annotations.get(PREDICTABLE_IP_ANNOTATION),
                pool=member.annotations.get(IPSET_NAME_ANNOTATION),
            )
        return self._annotate(member)

    def _annotate(self, member: Member) -> ReconcileResult:
        ordinal = extract_ordinal(member.name)
        params = self.provider.resolve(member.namespace, self.network_attachment)
        pool = predictable_pool(params, self.pool_size)
        ipset = self.ipset_for(member)

        try:
            address = self._retry_on_conflict(
                lambda: ipset.allocate_ip(pool, holder_key(ordinal)),
                what=f"pool {ipset.set_name}",
                member=member.name,
            )
        except PoolExhausted as e:
            db.log_event("ERROR", str(e), member=member.name, pool=ipset.set_name)
            pool_exhausted_alert(ipset.set_name, member.name, str(e))
            raise

        annotations = self.build_annotations(address, ordinal, ipset.set_name)
        self.update_annotations_with_retry(member, annotations)
        db.log_event("INFO", f"Annotated with predictable IP {address} (index {ordinal})", member=member.name, pool=ipset.set_name)
        return ReconcileResult(member=member.name, outcome="annotated", address=address, pool=ipset.set_name)

    def _release(self, member: Member) -> ReconcileResult:
        address = member.annotations[PREDICTABLE_IP_ANNOTATION]
        set_name = member.annotations[IPSET_NAME_ANNOTATION]
        ipset = self.ipset(set_name)
        try:
            self._retry_on_conflict(lambda: ipset.release_ip(address), what=f"pool {set_name}", member=member.name)
        except Exception as e:
            # The member is going away either way; the address stays held until released by hand.
            db.log_event("ERROR", f"Failed to release {address}: {type(e).__name__}: {e}", member=member.name, pool=set_name)
            return ReconcileResult(member=member.name, outcome="release_failed", address=address, pool=set_name)
        db.log_event("INFO", f"Released {address}", member=member.name, pool=set_name)
        return ReconcileResult(member=member.name, outcome="released", address=address, pool=set_name)

    def build_annotations(self, address: str, ordinal: int, set_name: str) -> dict[str, str]:
        return {
            NETWORKS_ANNOTATION: multus_annotation(self.network_attachment, self.interface_name, [address]),
            PREDICTABLE_IP_ANNOTATION: address,
            POD_INDEX_ANNOTATION: str(ordinal),
            IPSET_NAME_ANNOTATION: set_name,
        }

    def _backoff(self, attempt: int) -> None:
        if attempt < self.max_retries - 1:
            self.sleep(self.base_delay_s * (2 ** attempt))  # 100ms, 200ms, 400ms, 800ms

    def _retry_on_conflict(self, fn: Callable[[], T], what: str, member: str) -> T:
        attempt = 0
        while True:
            try:
                return fn()
            except ConflictError:
                if attempt >= self.max_retries - 1:
                    raise
                db.log_event("INFO", f"{what} modified concurrently, retrying (attempt {attempt + 1}/{self.max_retries})", member=member)
                self._backoff(attempt)
                attempt += 1

    def update_annotations_with_retry(self, member: Member, annotations: dict[str, str]) -> Member:
        """Merge ``annotations`` into the member, re-reading it after each conflict."""
        for attempt in range(self.max_retries):
            candidate = replace(member, annotations=merge_annotations(member.annotations, annotations))
            try:
                return self.store.update_member(candidate)
            except ConflictError:
                if attempt == self.max_retries - 1:
                    break
                db.log_event(
                    "INFO",
                    f"Member modified by another writer, retrying (attempt {attempt + 1}/{self.max_retries})",
                    member=member.name,
                )
                member = self.store.get_member(member.namespace, member.name)
                self._backoff(attempt)
        raise AnnotationConflictExhausted(
            f"Failed to update annotations of {member.namespace}/{member.name} after {self.max_retries} attempts due to conflicts"
        )

    # Periodic resync

    def start(self) -> None:
        if self._thr and self._thr.is_alive():
            return
        self._stop = False
        self._thr = Thread(target=self._loop, daemon=True)
        self._thr.start()

    def stop(self) -> None:
        self._stop = True

    def _loop(self) -> None:
        db.log_event("INFO", "Resync loop started")
        while not self._stop:
            try:
                self.resync()
            except Exception as e:
                db.log_event("ERROR", f"Resync failed: {type(e).__name__}: {e}")
            time.sleep(max(1, settings.resync_interval_s))

    def resync(self) -> list[ReconcileResult]:
        """Reconcile every member of the namespace once; one failing member never stops the pass."""
        results: list[ReconcileResult] = []
        for member in self.store.list_members(self.namespace):
            if not self.classifier.is_managed(member):
                continue
            try:
                results.append(self.reconcile_member(member))
            except Exception as e:
                db.log_event("ERROR", f"Reconcile failed: {type(e).__name__}: {e}", member=member.name)
        return results
