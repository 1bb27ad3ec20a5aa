"""
Shared fixtures: an app on an in-memory database, a fake Diavgeia registry
and an in-memory network share that records every call.
"""

from datetime import datetime, timedelta

import pytest

from tech_office_cms import create_app
from tech_office_cms.config import TestConfig
from tech_office_cms.database import db
from tech_office_cms.errors import NotFoundError, UpstreamError
from tech_office_cms.share import ShareClient


def make_decision(ada, **overrides):
    """Decision payload shaped like the Diavgeia API response"""
    payload = {
        "ada": ada,
        "subject": f"Decision {ada}",
        "protocolNumber": f"PR-{ada}",
        "decisionTypeId": "Β.1.3",
        "organizationId": "99221922",
        "organizationLabel": "Municipality of Example",
        "issueDate": 1704067200000,  # 2024-01-01T00:00:00Z
        "documentUrl": f"https://diavgeia.gov.gr/doc/{ada}",
        "status": "PUBLISHED",
        "submitterUid": "100",
        "unitIds": ["200", "201"],
        "thematicCategoryIds": ["20"],
        "attachments": [],
        "extraFieldValues": {"amount": {"amount": 10}},
    }
    payload.update(overrides)
    return payload


class FakeRegistry:
    """Stand-in for DiavgeiaClient that records every call"""

    def __init__(self, decisions=None):
        self.decisions = {d["ada"]: d for d in (decisions or [])}
        self.search_results = []
        self.error = None
        self.get_calls = []
        self.search_calls = []

    @property
    def calls(self):
        return len(self.get_calls) + len(self.search_calls)

    def get_decision(self, ada):
        self.get_calls.append(ada)
        if self.error:
            raise self.error
        if ada not in self.decisions:
            raise NotFoundError(f"Decision with ADA {ada} not found")
        return dict(self.decisions[ada])

    def search(self, params):
        self.search_calls.append(dict(params))
        if self.error:
            raise self.error
        return {
            "decisions": [dict(d) for d in self.search_results],
            "info": {"page": params.get("page"), "size": params.get("size"),
                     "total": len(self.search_results)},
        }


class MemoryShare(ShareClient):
    """Network share kept in memory; every call lands in ``log``"""

    def __init__(self, files, dirs, log):
        self.files = files
        self.dirs = dirs
        self.log = log
        self.closed = False
        self.log.append(("open",))

    def put(self, path, data):
        self.log.append(("put", path))
        self.files[path] = data

    def get(self, path):
        self.log.append(("get", path))
        if path not in self.files:
            raise FileNotFoundError(path)
        return self.files[path]

    def list(self, path):
        self.log.append(("list", path))
        if path not in self.dirs:
            raise FileNotFoundError(path)
        prefix = path + "\\"
        names = {p[len(prefix):].split("\\")[0] for p in list(self.files) + list(self.dirs) if p.startswith(prefix)}
        return sorted(names)

    def mkdir(self, path):
        self.log.append(("mkdir", path))
        self.dirs.add(path)

    def close(self):
        self.closed = True
        self.log.append(("close",))


class MemoryShareFactory:
    def __init__(self):
        self.files = {}
        self.dirs = set()
        self.log = []
        self.clients = []

    def __call__(self):
        client = MemoryShare(self.files, self.dirs, self.log)
        self.clients.append(client)
        return client

    @property
    def operations(self):
        return [entry for entry in self.log if entry[0] not in ("open", "close")]


class StepClock:
    """Clock that advances one minute every time it is read"""

    def __init__(self, start=datetime(2024, 3, 1, 12, 0, 0)):
        self.current = start

    def __call__(self):
        value = self.current
        self.current = self.current + timedelta(minutes=1)
        return value


@pytest.fixture
def registry():
    return FakeRegistry()


@pytest.fixture
def share():
    return MemoryShareFactory()


@pytest.fixture
def app(registry, share):
    app = create_app(TestConfig, registry=registry, share_factory=share)
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def session(app):
    return db.session


@pytest.fixture
def clock():
    return StepClock()


@pytest.fixture
def upstream_down(registry):
    registry.error = UpstreamError("Diavgeia API request failed: timed out")
    return registry
