import logging
from collections import Counter
from dataclasses import dataclass, field

from msgraph import GraphServiceClient

from license_syncer import graph
from license_syncer.errors import LicenseAssignmentError, UsageLocationError
from license_syncer.graph import LicensePlan
from license_syncer.reconciler import (
    DEFAULT_RULES,
    AffiliationRule,
    Decision,
    IdentityAccount,
    decide,
)
from license_syncer.report import RunLog

logger = logging.getLogger(__name__)


@dataclass
class ProvisioningResult:
    provisioned: int = 0
    skipped: int = 0
    usage_location_writes: int = 0
    by_decision: Counter = field(default_factory=Counter)


async def provision(
    graph_client: GraphServiceClient,
    accounts: list[IdentityAccount],
    directory_index: dict[str, str],
    plans: dict[Decision, LicensePlan],
    usage_location: str,
    run_log: RunLog,
    rules: tuple[AffiliationRule, ...] = DEFAULT_RULES,
    verbose: bool = False,
) -> ProvisioningResult:
    """
    Licenses every unlicensed account whose directory affiliation qualifies.

    Stops at the first failed Graph call; the remaining accounts are left for
    the next run.

    Args:
        graph_client: The Microsoft Graph client.
        accounts: Unlicensed synchronized accounts.
        directory_index: Lower-cased UPN to affiliation.
        plans: License plan for each assigning decision.
        usage_location: Usage location every licensed account must carry.
        run_log: The run's log.
        rules: Affiliation rules in precedence order.
        verbose: Log a line for every account licensed.

    Returns:
        ProvisioningResult: Counts for the report trailer.

    Raises:
        UsageLocationError: Setting the usage location failed.
        LicenseAssignmentError: Assigning the license failed.
    """
    result = ProvisioningResult()
    for account in accounts:
        decision = decide(account, directory_index, run_log, rules)
        if decision is Decision.NO_ACTION:
            result.skipped += 1
            continue
        plan = plans[decision]
        upn = account.user_principal_name

        if account.usage_location != usage_location:
            try:
                await graph.set_usage_location(graph_client, account.id, usage_location)
            except Exception as e:
                raise UsageLocationError(f"Setting usage location on {upn} failed") from e
            account.usage_location = usage_location
            result.usage_location_writes += 1

        try:
            await graph.assign_license(graph_client, account.id, plan)
        except Exception as e:
            raise LicenseAssignmentError(f"Assigning {plan.part_number} to {upn} failed") from e
        account.licenses.append(str(plan.sku_id))

        result.provisioned += 1
        result.by_decision[decision] += 1
        if verbose:
            run_log.info(f"{upn}: assigned {plan.part_number}")
    return result
