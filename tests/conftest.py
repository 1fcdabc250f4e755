import os
import sys
import tempfile

# Settings are read at import time: point the journal at a scratch database
# and keep the resync thread off before anything imports predip.
_scratch = tempfile.mkdtemp(prefix="predip-tests-")
os.environ.setdefault("PREDIP_DB_PATH", os.path.join(_scratch, "journal.db"))
os.environ.setdefault("PREDIP_RESYNC_INTERVAL_S", "0")
os.environ.setdefault("PREDIP_STORE_BACKEND", "memory")
os.environ.setdefault("PREDIP_ENABLE_EMAIL", "false")

# Ensure project root is importable (so `import main` works reliably across environments)
_project_root = os.path.dirname(os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

import pytest

from predip import db
from predip.members import MemberClassifier
from predip.network import StaticNetworkProvider
from predip.reconciler import AnnotationReconciler
from predip.store import InMemoryObjectStore

NS = "openstack"


@pytest.fixture(scope="session", autouse=True)
def journal():
    db.init_db()


@pytest.fixture
def store():
    return InMemoryObjectStore()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def make_reconciler(store, sleeps):
    """Reconciler over [10.0.0.1, 10.0.0.5) with no extra sibling pools and a recording sleep."""

    def _make(**overrides):
        kwargs = dict(
            store=store,
            provider=StaticNetworkProvider("10.0.0.0/24"),
            namespace=NS,
            network_attachment="designate",
            pool_size=4,
            siblings=(),
            interface_name="designate",
            max_retries=5,
            base_delay_s=0.1,
            sleep=sleeps.append,
        )
        kwargs.update(overrides)
        return AnnotationReconciler(**kwargs)

    return _make


@pytest.fixture
def reconciler(make_reconciler):
    return make_reconciler()


@pytest.fixture
def role_classifier():
    return MemberClassifier(roles=("role-backend", "role-mdns"))
