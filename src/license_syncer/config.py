import logging
import os
import sys
from dataclasses import dataclass

from dotenv import load_dotenv

from license_syncer.errors import ConfigurationError

# Load environment variables from .env file
load_dotenv()

logger = logging.getLogger(__name__)

SCOPE_COMBINED = "combined"
SCOPE_STUDENT = "student"

AFFILIATION_CLASSES = {
    SCOPE_COMBINED: ("Student", "Faculty", "Staff"),
    SCOPE_STUDENT: ("Student",),
}

# Office 365 A1 SKUs and the service plans switched off for every assignment.
DEFAULT_STUDENT_SKU = "STANDARDWOFFPACK_STUDENT"
DEFAULT_FACULTY_STAFF_SKU = "STANDARDWOFFPACK_FACULTY"
DEFAULT_DISABLED_PLANS = ("YAMMER_EDU", "SWAY", "INTUNE_O365")


def configure_logging(level: int = logging.INFO) -> None:
    """Configures root logging to stdout in the project's standard format."""
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def _split_list(value: str | None, default: tuple[str, ...]) -> tuple[str, ...]:
    if value is None:
        return default
    return tuple(item.strip() for item in value.split(",") if item.strip())


def _int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError as e:
        logger.error(f"{name} must be an integer, got '{value}'")
        raise ConfigurationError(f"{name} must be an integer, got '{value}'") from e


def _flag(value: str | None) -> bool:
    return (value or "false").strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    """Run configuration. Everything except tenant and client ids has a default."""

    tenant_id: str | None = None
    client_id: str | None = None
    key: str | None = None
    graph_secret_file: str = "graph_secret.enc"

    directory_server: str = "ldap://localhost"
    directory_bind_user: str | None = None
    directory_password_file: str | None = None
    directory_search_base: str = "DC=example,DC=edu"
    affiliation_attribute: str = "eduPersonAffiliation"

    scope: str = SCOPE_COMBINED
    usage_location: str = "US"
    student_sku: str = DEFAULT_STUDENT_SKU
    student_disabled_plans: tuple[str, ...] = DEFAULT_DISABLED_PLANS
    faculty_staff_sku: str = DEFAULT_FACULTY_STAFF_SKU
    faculty_staff_disabled_plans: tuple[str, ...] = DEFAULT_DISABLED_PLANS

    log_file: str = "license_sync.log"
    mail_sender: str = "license-sync@example.edu"
    mail_recipients: tuple[str, ...] = ("it-admins@example.edu",)
    mail_relay: str = "localhost"
    mail_port: int = 25

    verbose: bool = False

    @property
    def affiliation_classes(self) -> tuple[str, ...]:
        return AFFILIATION_CLASSES[self.scope]

    @classmethod
    def from_env(cls) -> "Settings":
        """Builds settings from the process environment (and .env).

        Raises:
            ConfigurationError: A numeric setting is not a number.
        """
        scope = os.getenv("SYNC_SCOPE", SCOPE_COMBINED).strip().lower()
        if scope not in AFFILIATION_CLASSES:
            logger.warning(f"Unknown SYNC_SCOPE '{scope}', falling back to '{SCOPE_COMBINED}'.")
            scope = SCOPE_COMBINED
        return cls(
            tenant_id=os.getenv("AZURE_TENANT_ID"),
            client_id=os.getenv("AZURE_CLIENT_ID"),
            key=os.getenv("LICENSE_SYNC_KEY"),
            graph_secret_file=os.getenv("GRAPH_SECRET_FILE", cls.graph_secret_file),
            directory_server=os.getenv("DIRECTORY_SERVER", cls.directory_server),
            directory_bind_user=os.getenv("DIRECTORY_BIND_USER"),
            directory_password_file=os.getenv("DIRECTORY_PASSWORD_FILE"),
            directory_search_base=os.getenv("DIRECTORY_SEARCH_BASE", cls.directory_search_base),
            affiliation_attribute=os.getenv(
                "DIRECTORY_AFFILIATION_ATTRIBUTE", cls.affiliation_attribute
            ),
            scope=scope,
            usage_location=os.getenv("USAGE_LOCATION", cls.usage_location).strip().upper(),
            student_sku=os.getenv("STUDENT_SKU", cls.student_sku),
            student_disabled_plans=_split_list(
                os.getenv("STUDENT_DISABLED_PLANS"), DEFAULT_DISABLED_PLANS
            ),
            faculty_staff_sku=os.getenv("FACULTY_STAFF_SKU", cls.faculty_staff_sku),
            faculty_staff_disabled_plans=_split_list(
                os.getenv("FACULTY_STAFF_DISABLED_PLANS"), DEFAULT_DISABLED_PLANS
            ),
            log_file=os.getenv("LOG_FILE", cls.log_file),
            mail_sender=os.getenv("MAIL_SENDER", cls.mail_sender),
            mail_recipients=_split_list(
                os.getenv("MAIL_RECIPIENT"), ("it-admins@example.edu",)
            ),
            mail_relay=os.getenv("MAIL_RELAY", cls.mail_relay),
            mail_port=_int("MAIL_PORT", cls.mail_port),
            verbose=_flag(os.getenv("VERBOSE")),
        )
