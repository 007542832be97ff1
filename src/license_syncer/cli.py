"""Entry point: one licensing pass, reported by e-mail, exit code per failure site."""

import asyncio
import importlib
import logging
from contextlib import contextmanager
from datetime import datetime

from license_syncer.config import Settings, configure_logging
from license_syncer.errors import ConfigurationError, ExitCode, SyncAbort
from license_syncer.reconciler import Decision, rules_for_scope
from license_syncer.report import Reporter, RunLog

logger = logging.getLogger(__name__)

DIRECTORY_MODULES = ("license_syncer.directory",)
GRAPH_MODULES = ("license_syncer.credentials", "license_syncer.graph", "license_syncer.provisioner")


@contextmanager
def abort_on_error(reporter: Reporter, exit_code: ExitCode):
    """Routes any failure inside the block to the reporter with ``exit_code``.

    A SyncAbort keeps its own exit code.
    """
    try:
        yield
    except SyncAbort as e:
        reporter.fatal(e, e.exit_code)
    except Exception as e:
        reporter.fatal(e, exit_code)


def load_modules(names: tuple[str, ...]) -> list:
    return [importlib.import_module(name) for name in names]


async def run(settings: Settings) -> int:
    """
    Runs one licensing pass.

    Returns:
        int: Number of accounts licensed. Fatal errors raise SystemExit instead.
    """
    started = datetime.now()
    run_log = RunLog(started)
    reporter = Reporter(settings, run_log)
    rules = rules_for_scope(settings.scope)
    run_log.info(f"Scope: {settings.scope} ({', '.join(settings.affiliation_classes)})")

    with abort_on_error(reporter, ExitCode.DIRECTORY_MODULE_LOAD):
        (directory,) = load_modules(DIRECTORY_MODULES)
    with abort_on_error(reporter, ExitCode.GRAPH_MODULE_LOAD):
        credentials, graph, provisioner = load_modules(GRAPH_MODULES)

    with abort_on_error(reporter, ExitCode.CREDENTIAL_READ):
        client_secret = credentials.read_secret(settings.graph_secret_file, settings.key)
        directory_password = None
        if settings.directory_password_file:
            directory_password = credentials.read_secret(settings.directory_password_file, settings.key)
    with abort_on_error(reporter, ExitCode.CREDENTIAL_BUILD):
        credential = credentials.build_graph_credential(
            settings.tenant_id, settings.client_id, client_secret
        )

    with abort_on_error(reporter, ExitCode.SERVICE_CONNECT):
        graph_client = graph.get_graph_client(credential)
        skus = await graph.list_subscribed_skus(graph_client)
        configured = {Decision.ASSIGN_STUDENT_SKU: (settings.student_sku, settings.student_disabled_plans)}
        if any(rule.decision is Decision.ASSIGN_FACULTY_STAFF_SKU for rule in rules):
            configured[Decision.ASSIGN_FACULTY_STAFF_SKU] = (
                settings.faculty_staff_sku,
                settings.faculty_staff_disabled_plans,
            )
        plans = {
            decision: graph.resolve_license_plan(skus, part_number, disabled)
            for decision, (part_number, disabled) in configured.items()
        }
        for plan in plans.values():
            sku = skus[plan.part_number]
            run_log.info(f"{sku.part_number}: {sku.consumed_units} of {sku.total_units} units consumed")
            if sku.available_units <= 0:
                run_log.warning(f"{sku.part_number} has no units available")

    with abort_on_error(reporter, ExitCode.DIRECTORY_READ):
        conn = directory.connect_directory(settings, directory_password)
        try:
            search_filter = directory.build_search_filter(
                settings.affiliation_attribute, settings.affiliation_classes
            )
            directory_index = directory.read_directory_accounts(
                conn, settings.directory_search_base, search_filter, settings.affiliation_attribute
            )
        finally:
            conn.unbind()
        run_log.info(f"Directory: {len(directory_index)} active affiliated account(s)")

    with abort_on_error(reporter, ExitCode.IDENTITY_READ):
        accounts = await graph.list_unlicensed_synced_users(graph_client)
        run_log.info(f"Identity service: {len(accounts)} unlicensed synchronized account(s)")

    with abort_on_error(reporter, ExitCode.LICENSE_ASSIGN):
        result = await provisioner.provision(
            graph_client,
            accounts,
            directory_index,
            plans,
            settings.usage_location,
            run_log,
            rules=rules,
            verbose=settings.verbose,
        )

    for decision, count in result.by_decision.items():
        run_log.info(f"{plans[decision].part_number}: {count} assigned")
    reporter.finish(result.provisioned, result.skipped, datetime.now() - started)
    return result.provisioned


def main() -> None:
    configure_logging()
    try:
        settings = Settings.from_env()
    except ConfigurationError as e:
        # No reporter yet: the mail settings themselves may be the broken ones.
        logger.error(f"Invalid configuration, nothing was changed: {e}")
        raise SystemExit(int(e.exit_code))
    if settings.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    asyncio.run(run(settings))


if __name__ == "__main__":
    main()
