import logging
from dataclasses import dataclass, field
from uuid import UUID

from azure.core.credentials import TokenCredential
from kiota_abstractions.base_request_configuration import RequestConfiguration
from msgraph import GraphServiceClient
from msgraph.generated.models.assigned_license import AssignedLicense
from msgraph.generated.models.o_data_errors.o_data_error import ODataError
from msgraph.generated.models.user import User
from msgraph.generated.users.item.assign_license.assign_license_post_request_body import (
    AssignLicensePostRequestBody,
)
from msgraph.generated.users.users_request_builder import UsersRequestBuilder

from license_syncer.errors import SkuResolutionError
from license_syncer.reconciler import IdentityAccount

logger = logging.getLogger(__name__)

GRAPH_SCOPES = ["https://graph.microsoft.com/.default"]
USER_SELECT = ["id", "userPrincipalName", "usageLocation", "assignedLicenses", "onPremisesSyncEnabled"]
PAGE_SIZE = 999


@dataclass
class LicenseSku:
    """A subscribed SKU with its utilization counters."""

    sku_id: UUID
    part_number: str
    total_units: int
    consumed_units: int
    plans: dict[str, UUID] = field(default_factory=dict)

    @property
    def available_units(self) -> int:
        return self.total_units - self.consumed_units


@dataclass(frozen=True)
class LicensePlan:
    """A SKU plus the service plans switched off when it is assigned."""

    sku_id: UUID
    part_number: str
    disabled_plans: tuple[UUID, ...] = ()


def get_graph_client(credential: TokenCredential) -> GraphServiceClient:
    """
    Initializes and returns a Microsoft GraphServiceClient for the given credential.

    Returns:
        GraphServiceClient: An initialized Microsoft Graph client.
    """
    logger.info("Creating Graph client with app-only credential.")
    try:
        graph_client = GraphServiceClient(credentials=credential, scopes=GRAPH_SCOPES)
        logger.info("Graph client created.")
        return graph_client
    except Exception as e:
        logger.error(f"Graph client creation failed: {e}")
        raise


async def list_subscribed_skus(graph_client: GraphServiceClient) -> dict[str, LicenseSku]:
    """
    Retrieves the tenant's subscribed SKUs keyed by part number.

    Args:
        graph_client: The Microsoft Graph client.

    Returns:
        dict[str, LicenseSku]: SKUs with total (enabled prepaid) and consumed units.
    """
    logger.info("Retrieving subscribed SKUs.")
    try:
        response = await graph_client.subscribed_skus.get()
    except ODataError as o_data_error:
        logger.error(f"OData error retrieving subscribed SKUs: {o_data_error.error.message}")
        raise
    except Exception as e:
        logger.error(f"Error retrieving subscribed SKUs: {e}")
        raise

    skus: dict[str, LicenseSku] = {}
    for sku in (response.value if response and response.value else []):
        prepaid = sku.prepaid_units.enabled if sku.prepaid_units else 0
        skus[sku.sku_part_number] = LicenseSku(
            sku_id=sku.sku_id,
            part_number=sku.sku_part_number,
            total_units=prepaid or 0,
            consumed_units=sku.consumed_units or 0,
            plans={
                plan.service_plan_name: plan.service_plan_id
                for plan in (sku.service_plans or [])
            },
        )
    logger.info(f"Found {len(skus)} subscribed SKU(s).")
    return skus


def resolve_license_plan(
    skus: dict[str, LicenseSku], part_number: str, disabled_plan_names: tuple[str, ...]
) -> LicensePlan:
    """Maps a configured SKU part number and plan names to Graph ids."""
    sku = skus.get(part_number)
    if sku is None:
        raise SkuResolutionError(f"SKU {part_number} is not subscribed in this tenant.")
    missing = [name for name in disabled_plan_names if name not in sku.plans]
    if missing:
        raise SkuResolutionError(
            f"SKU {part_number} has no service plan(s) named {', '.join(missing)}."
        )
    return LicensePlan(
        sku_id=sku.sku_id,
        part_number=part_number,
        disabled_plans=tuple(sku.plans[name] for name in disabled_plan_names),
    )


def _to_identity_account(user: User) -> IdentityAccount:
    return IdentityAccount(
        id=user.id,
        user_principal_name=user.user_principal_name,
        usage_location=user.usage_location,
        licenses=[str(lic.sku_id) for lic in (user.assigned_licenses or [])],
        synchronized=bool(user.on_premises_sync_enabled),
    )


async def list_unlicensed_synced_users(graph_client: GraphServiceClient) -> list[IdentityAccount]:
    """
    Retrieves all directory-synchronized users that hold no licenses.

    Follows @odata.nextLink until every page is read.

    Args:
        graph_client: The Microsoft Graph client.

    Returns:
        list[IdentityAccount]: Unlicensed synchronized accounts.
    """
    logger.info("Retrieving synchronized users without licenses.")
    query_params = UsersRequestBuilder.UsersRequestBuilderGetQueryParameters(
        filter="onPremisesSyncEnabled eq true",
        select=USER_SELECT,
        top=PAGE_SIZE,
    )
    request_configuration = RequestConfiguration(query_parameters=query_params)

    accounts: list[IdentityAccount] = []
    try:
        response = await graph_client.users.get(request_configuration=request_configuration)
        while response:
            for user in response.value or []:
                if user.user_principal_name and not user.assigned_licenses:
                    accounts.append(_to_identity_account(user))
            if not response.odata_next_link:
                break
            response = await graph_client.users.with_url(response.odata_next_link).get()
    except ODataError as o_data_error:
        logger.error(f"OData error retrieving users: {o_data_error.error.message}")
        raise
    except Exception as e:
        logger.error(f"Error retrieving users: {e}")
        raise
    logger.info(f"Found {len(accounts)} unlicensed synchronized user(s).")
    return accounts


async def set_usage_location(graph_client: GraphServiceClient, user_id: str, usage_location: str) -> None:
    """
    Sets a user's usage location, a prerequisite for license assignment.

    Args:
        graph_client: The Microsoft Graph client.
        user_id: The object ID of the user.
        usage_location: Two-letter country code.
    """
    logger.debug(f"Setting usage location {usage_location} on user ID: {user_id}")
    try:
        await graph_client.users.by_user_id(user_id).patch(User(usage_location=usage_location))
    except ODataError as o_data_error:
        logger.error(
            f"OData error setting usage location for user {user_id}: {o_data_error.error.message}"
        )
        raise
    except Exception as e:
        logger.error(f"Error setting usage location for user {user_id}: {e}")
        raise


async def assign_license(graph_client: GraphServiceClient, user_id: str, plan: LicensePlan) -> None:
    """
    Assigns one SKU to a user with the plan's service plans disabled.

    Args:
        graph_client: The Microsoft Graph client.
        user_id: The object ID of the user.
        plan: The SKU and disabled service plans to assign.
    """
    logger.debug(f"Assigning {plan.part_number} to user ID: {user_id}")
    body = AssignLicensePostRequestBody(
        add_licenses=[
            AssignedLicense(sku_id=plan.sku_id, disabled_plans=list(plan.disabled_plans))
        ],
        remove_licenses=[],
    )
    try:
        await graph_client.users.by_user_id(user_id).assign_license.post(body)
    except ODataError as o_data_error:
        logger.error(
            f"OData error assigning {plan.part_number} to user {user_id}: {o_data_error.error.message}"
        )
        if o_data_error.error and o_data_error.error.details:
            for detail in o_data_error.error.details:
                logger.error(f"  Detail: Code: {detail.code}, Message: {detail.message}, Target: {detail.target}")
        raise
    except Exception as e:
        logger.error(f"Error assigning {plan.part_number} to user {user_id}: {e}")
        raise
