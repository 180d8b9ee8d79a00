import os
import sys
from pathlib import Path
from typing import Callable, Iterable, Optional

import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("CLINIC_ACCESS_ENVIRONMENT", "test")
os.environ.setdefault("CLINIC_ACCESS_DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("CLINIC_ACCESS_LOG_JSON", "false")
os.environ.setdefault("CLINIC_ACCESS_REDIS_URL", "")
os.environ.setdefault("CLINIC_ACCESS_REDIS_TOKEN", "")
os.environ.setdefault("CLINIC_ACCESS_ALERT_TOPIC_ARN", "")
os.environ.setdefault("CLINIC_ACCESS_CONSENT_SERVICE_URL", "")
os.environ.setdefault("CLINIC_ACCESS_AUDIT_CONSUMER_AUTOSTART", "false")
os.environ.setdefault("CLINIC_ACCESS_EMERGENCY_AUDIT_TIMEOUT_MS", "2000")

PROJECT_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(PROJECT_ROOT))

from clinic_access.core.config import get_settings

get_settings.cache_clear()

from clinic_access.core.database import engine  # noqa: E402
from clinic_access.engine import AccessControlEngine, build_engine  # noqa: E402
from clinic_access.main import create_app  # noqa: E402
from clinic_access.models import Base  # noqa: E402
from clinic_access.schemas.assignment import UserRolesAssign  # noqa: E402
from clinic_access.services.cache import InMemoryPermissionCache, set_permission_cache  # noqa: E402
from clinic_access.services.notifications import NullAlertPublisher, set_alert_publisher  # noqa: E402


@pytest.fixture(autouse=True)
def reset_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    set_permission_cache(InMemoryPermissionCache())
    set_alert_publisher(NullAlertPublisher())
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def alerts() -> NullAlertPublisher:
    publisher = NullAlertPublisher()
    set_alert_publisher(publisher)
    return publisher


@pytest.fixture()
def access_engine(alerts) -> AccessControlEngine:  # noqa: ANN001
    access_engine = build_engine(get_settings(), alerts=alerts)
    access_engine.start()
    yield access_engine
    access_engine.shutdown()


@pytest.fixture()
def assign(access_engine: AccessControlEngine) -> Callable[..., None]:
    """Assign system or custom roles (by name) and direct permissions to a user."""

    def _assign(user_id: str, role_names: Iterable[str] = (), direct: Optional[Iterable[str]] = None) -> None:
        snapshot = access_engine.store.load()
        role_ids = [snapshot.role_by_name(name).id for name in role_names]
        access_engine.admin.assign_roles(
            user_id,
            UserRolesAssign(role_ids=role_ids, direct_permissions=list(direct) if direct is not None else None),
            actor_id="admin-1",
        )

    return _assign


@pytest.fixture()
def client() -> TestClient:  # noqa: ANN001
    app = create_app()
    with TestClient(app) as test_client:
        yield test_client
