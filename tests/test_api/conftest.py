"""
API test fixtures: app wired to the in-memory session, notifier mocked
"""
from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient

from billflow.api.deps import get_background_notifier, get_db
from billflow.main import create_app


@pytest.fixture
def notifier():
    n = Mock()
    n.send_notification.return_value = {"success": True}
    return n


@pytest.fixture
def client(db_session, notifier):
    """Test client bound to the in-memory test session"""
    app = create_app(start_background_jobs=False)

    def _override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_background_notifier] = lambda: notifier
    return TestClient(app)
