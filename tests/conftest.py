import logging
import os
import sys
from unittest.mock import AsyncMock, MagicMock
from uuid import UUID

import pytest
from msgraph import GraphServiceClient

# Add src directory to sys.path so the package imports without installation
current_dir = os.path.dirname(os.path.abspath(__file__))
src_path = os.path.join(os.path.dirname(current_dir), "src")
sys.path.insert(0, src_path)

from license_syncer.config import Settings  # noqa: E402
from license_syncer.graph import LicensePlan  # noqa: E402
from license_syncer.reconciler import Decision  # noqa: E402
from license_syncer.report import RunLog  # noqa: E402

STUDENT_SKU_ID = UUID("314c4481-f395-4525-be8b-2ec4bb1e9d91")
FACULTY_SKU_ID = UUID("94763226-9b3c-4e75-a931-5c89701abe66")
SWAY_PLAN_ID = UUID("a23b959c-7ce8-4e57-9140-b90eb88a9e97")
YAMMER_PLAN_ID = UUID("2078e8df-cff6-4290-98cb-5408261a760a")


@pytest.fixture(autouse=True)
def configure_test_logging():
    # Clear any existing handlers on the root logger to avoid duplicate logs in tests
    for handler in logging.root.handlers[:]:
        logging.root.removeHandler(handler)
    logging.basicConfig(level=logging.DEBUG, handlers=[logging.StreamHandler(sys.stdout)])


@pytest.fixture
def settings(tmp_path):
    return Settings(
        tenant_id="test-tenant-id",
        client_id="test-client-id",
        key="test-key",
        graph_secret_file=str(tmp_path / "graph_secret.enc"),
        log_file=str(tmp_path / "license_sync.log"),
        mail_sender="sync@example.edu",
        mail_recipients=("admins@example.edu",),
        mail_relay="smtp.example.edu",
    )


@pytest.fixture
def run_log():
    return RunLog()


@pytest.fixture
def plans():
    return {
        Decision.ASSIGN_STUDENT_SKU: LicensePlan(
            sku_id=STUDENT_SKU_ID,
            part_number="STANDARDWOFFPACK_STUDENT",
            disabled_plans=(SWAY_PLAN_ID, YAMMER_PLAN_ID),
        ),
        Decision.ASSIGN_FACULTY_STAFF_SKU: LicensePlan(
            sku_id=FACULTY_SKU_ID,
            part_number="STANDARDWOFFPACK_FACULTY",
            disabled_plans=(SWAY_PLAN_ID,),
        ),
    }


@pytest.fixture
def mock_graph_service_client():
    """Provides a mock GraphServiceClient with mocked fluent methods."""
    mock_client = AsyncMock(spec=GraphServiceClient)

    mock_client.subscribed_skus = MagicMock(name="SubscribedSkusRequestBuilder")
    mock_client.subscribed_skus.get = AsyncMock()

    mock_client.users = MagicMock(name="UsersRequestBuilder")
    mock_client.users.get = AsyncMock()

    mock_next_page_builder = MagicMock(name="UsersRequestBuilder(next link)")
    mock_next_page_builder.get = AsyncMock()
    mock_client.users.with_url.return_value = mock_next_page_builder

    mock_user_item_builder = MagicMock(name="UserItemRequestBuilder")
    mock_user_item_builder.patch = AsyncMock()
    mock_user_item_builder.assign_license = MagicMock(name="AssignLicenseRequestBuilder")
    mock_user_item_builder.assign_license.post = AsyncMock()
    mock_client.users.by_user_id.return_value = mock_user_item_builder

    return mock_client
