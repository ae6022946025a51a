import os as _os
import sys

import pytest

# Ensure project root is importable (so `import fro...` and `import main` work without installing)
_project_root = _os.path.dirname(_os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from fro.api_models import CreateFreshRSSRequest  # noqa: E402
from fro.db import Store  # noqa: E402


@pytest.fixture
def store(tmp_path):
    """An isolated, initialised sqlite store."""
    s = Store(str(tmp_path / "test.db"))
    s.init_db()
    return s


@pytest.fixture
def writes(store):
    """Record every committed write as (event_type, kind)."""
    seen = []
    store.watch(lambda event_type, obj: seen.append((event_type, obj["kind"])))
    return seen


@pytest.fixture
def make_freshrss(store):
    def _make(name="reader", namespace="default", title="My Feeds", default_user="admin"):
        req = CreateFreshRSSRequest(namespace=namespace, name=name, title=title, defaultUser=default_user)
        return store.create(req.to_resource().manifest())

    return _make
