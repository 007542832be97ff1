from unittest.mock import AsyncMock, patch

import pytest
from msgraph.generated.models.o_data_errors.main_error import MainError
from msgraph.generated.models.o_data_errors.o_data_error import ODataError

from license_syncer.errors import ExitCode, LicenseAssignmentError, UsageLocationError
from license_syncer.provisioner import provision
from license_syncer.reconciler import Decision, IdentityAccount


@pytest.mark.asyncio
async def test_student_without_usage_location(mock_graph_service_client, plans, run_log):
    """Scenario: one usage-location write and one student assignment."""
    accounts = [IdentityAccount(id="id-a", user_principal_name="a@x", usage_location=None)]

    with patch("license_syncer.graph.set_usage_location", new_callable=AsyncMock) as mock_set_location, \
            patch("license_syncer.graph.assign_license", new_callable=AsyncMock) as mock_assign:
        result = await provision(mock_graph_service_client, accounts, {"a@x": "Student"}, plans, "US", run_log)

    mock_set_location.assert_called_once_with(mock_graph_service_client, "id-a", "US")
    mock_assign.assert_called_once_with(mock_graph_service_client, "id-a", plans[Decision.ASSIGN_STUDENT_SKU])
    assert result.provisioned == 1
    assert result.usage_location_writes == 1
    assert result.by_decision[Decision.ASSIGN_STUDENT_SKU] == 1


@pytest.mark.asyncio
async def test_faculty_with_usage_location(mock_graph_service_client, plans, run_log):
    """Scenario: usage location already set, so only the faculty/staff assignment is issued."""
    accounts = [IdentityAccount(id="id-b", user_principal_name="b@x", usage_location="US")]

    with patch("license_syncer.graph.set_usage_location", new_callable=AsyncMock) as mock_set_location, \
            patch("license_syncer.graph.assign_license", new_callable=AsyncMock) as mock_assign:
        result = await provision(mock_graph_service_client, accounts, {"b@x": "Faculty"}, plans, "US", run_log)

    mock_set_location.assert_not_called()
    mock_assign.assert_called_once_with(
        mock_graph_service_client, "id-b", plans[Decision.ASSIGN_FACULTY_STAFF_SKU]
    )
    assert result.provisioned == 1
    assert result.usage_location_writes == 0


@pytest.mark.asyncio
async def test_unknown_account_is_skipped(mock_graph_service_client, plans, run_log):
    """Scenario: no directory record, no assignment, one skip line."""
    accounts = [IdentityAccount(id="id-c", user_principal_name="c@x")]
    before = len(run_log)

    with patch("license_syncer.graph.set_usage_location", new_callable=AsyncMock) as mock_set_location, \
            patch("license_syncer.graph.assign_license", new_callable=AsyncMock) as mock_assign:
        result = await provision(mock_graph_service_client, accounts, {}, plans, "US", run_log)

    mock_set_location.assert_not_called()
    mock_assign.assert_not_called()
    assert result.provisioned == 0
    assert result.skipped == 1
    assert len(run_log) == before + 1
    assert "c@x is not an active account, skipped" in run_log.entries[-1]


@pytest.mark.asyncio
async def test_different_usage_location_is_rewritten(mock_graph_service_client, plans, run_log):
    accounts = [IdentityAccount(id="id-a", user_principal_name="a@x", usage_location="CA")]

    with patch("license_syncer.graph.set_usage_location", new_callable=AsyncMock) as mock_set_location, \
            patch("license_syncer.graph.assign_license", new_callable=AsyncMock):
        await provision(mock_graph_service_client, accounts, {"a@x": "Staff"}, plans, "US", run_log)

    mock_set_location.assert_called_once_with(mock_graph_service_client, "id-a", "US")


@pytest.mark.asyncio
async def test_second_pass_provisions_nothing(mock_graph_service_client, plans, run_log):
    """Re-running against the refreshed unlicensed set makes no changes."""
    accounts = [
        IdentityAccount(id="id-a", user_principal_name="a@x"),
        IdentityAccount(id="id-b", user_principal_name="b@x", usage_location="US"),
    ]
    directory_index = {"a@x": "Student", "b@x": "Staff"}

    with patch("license_syncer.graph.set_usage_location", new_callable=AsyncMock) as mock_set_location, \
            patch("license_syncer.graph.assign_license", new_callable=AsyncMock) as mock_assign:
        first = await provision(mock_graph_service_client, accounts, directory_index, plans, "US", run_log)
        still_unlicensed = [a for a in accounts if not a.licenses]
        second = await provision(mock_graph_service_client, still_unlicensed, directory_index, plans, "US", run_log)

    assert first.provisioned == 2
    assert second.provisioned == 0
    assert mock_set_location.call_count == 1
    assert mock_assign.call_count == 2
    assert all(a.usage_location == "US" for a in accounts)


@pytest.mark.asyncio
async def test_usage_location_failure_aborts_batch(mock_graph_service_client, plans, run_log):
    accounts = [
        IdentityAccount(id="id-a", user_principal_name="a@x"),
        IdentityAccount(id="id-b", user_principal_name="b@x"),
    ]
    error = ODataError(error=MainError(message="Forbidden"))

    with patch("license_syncer.graph.set_usage_location", new_callable=AsyncMock, side_effect=error) as mock_set_location, \
            patch("license_syncer.graph.assign_license", new_callable=AsyncMock) as mock_assign:
        with pytest.raises(UsageLocationError) as exc_info:
            await provision(
                mock_graph_service_client, accounts, {"a@x": "Student", "b@x": "Student"}, plans, "US", run_log
            )

    assert exc_info.value.exit_code == ExitCode.USAGE_LOCATION_SET
    assert exc_info.value.__cause__ is error
    mock_set_location.assert_called_once()
    mock_assign.assert_not_called()


@pytest.mark.asyncio
async def test_license_failure_aborts_batch(mock_graph_service_client, plans, run_log):
    accounts = [
        IdentityAccount(id="id-a", user_principal_name="a@x", usage_location="US"),
        IdentityAccount(id="id-b", user_principal_name="b@x", usage_location="US"),
    ]

    with patch("license_syncer.graph.set_usage_location", new_callable=AsyncMock), \
            patch("license_syncer.graph.assign_license", new_callable=AsyncMock,
                  side_effect=ODataError(error=MainError(message="No units"))) as mock_assign:
        with pytest.raises(LicenseAssignmentError, match="a@x") as exc_info:
            await provision(
                mock_graph_service_client, accounts, {"a@x": "Faculty", "b@x": "Faculty"}, plans, "US", run_log
            )

    assert exc_info.value.exit_code == ExitCode.LICENSE_ASSIGN
    mock_assign.assert_called_once()


@pytest.mark.asyncio
async def test_verbose_logs_each_assignment(mock_graph_service_client, plans, run_log):
    accounts = [IdentityAccount(id="id-a", user_principal_name="a@x", usage_location="US")]

    with patch("license_syncer.graph.set_usage_location", new_callable=AsyncMock), \
            patch("license_syncer.graph.assign_license", new_callable=AsyncMock):
        await provision(
            mock_graph_service_client, accounts, {"a@x": "Student"}, plans, "US", run_log, verbose=True
        )

    assert run_log.entries[-1].endswith("a@x: assigned STANDARDWOFFPACK_STUDENT")
