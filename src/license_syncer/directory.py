import logging

from ldap3 import ALL, SUBTREE, Connection, Server
from ldap3.core.exceptions import LDAPException
from ldap3.utils.conv import escape_filter_chars

from license_syncer.config import Settings
from license_syncer.errors import DirectoryReadError

logger = logging.getLogger(__name__)

UPN_ATTRIBUTE = "userPrincipalName"
# AD's ACCOUNTDISABLE bit in userAccountControl, tested with the bitwise-AND rule.
ENABLED_FILTER = "(!(userAccountControl:1.2.840.113556.1.4.803:=2))"
PAGE_SIZE = 500


def build_search_filter(attribute: str, classes: tuple[str, ...]) -> str:
    """
    Builds the LDAP filter for enabled people whose affiliation names one of ``classes``.

    Example:
        (&(objectCategory=person)(objectClass=user)(!(userAccountControl:...:=2))
          (|(eduPersonAffiliation=*Student*)(eduPersonAffiliation=*Faculty*)))
    """
    if not classes:
        raise ValueError("At least one affiliation class is required.")
    wildcards = "".join(f"({attribute}=*{escape_filter_chars(c)}*)" for c in classes)
    return f"(&(objectCategory=person)(objectClass=user){ENABLED_FILTER}(|{wildcards}))"


def connect_directory(settings: Settings, password: str | None) -> Connection:
    """Opens a bound connection to the directory server."""
    logger.info(f"Connecting to directory server {settings.directory_server}")
    server = Server(settings.directory_server, get_info=ALL)
    if settings.directory_bind_user:
        conn = Connection(
            server,
            user=settings.directory_bind_user,
            password=password,
            auto_bind=True,
            raise_exceptions=True,
        )
    else:
        conn = Connection(server, auto_bind=True, raise_exceptions=True)
    logger.info("Directory connection bound.")
    return conn


def _first_value(value) -> str | None:
    if isinstance(value, (list, tuple)):
        return str(value[0]) if value else None
    return str(value) if value else None


def _joined(value) -> str:
    if isinstance(value, (list, tuple)):
        return ";".join(str(v) for v in value)
    return str(value) if value else ""


def read_directory_accounts(
    conn: Connection, search_base: str, search_filter: str, attribute: str
) -> dict[str, str]:
    """
    Reads enabled accounts matching ``search_filter`` below ``search_base``.

    ``conn`` must raise on LDAP result codes (see connect_directory), otherwise
    a failed or truncated search looks like a short result.

    Args:
        conn: A bound ldap3 connection.
        search_base: Distinguished name to search from.
        search_filter: Filter from build_search_filter.
        attribute: The affiliation attribute.

    Returns:
        dict[str, str]: Lower-cased user principal name to affiliation text.
            Multi-valued affiliations are joined with ';'.

    Raises:
        LDAPException: The search failed.
        DirectoryReadError: The search matched no accounts.
    """
    logger.info(f"Searching {search_base} for affiliated accounts.")
    index: dict[str, str] = {}
    try:
        entries = conn.extend.standard.paged_search(
            search_base,
            search_filter,
            search_scope=SUBTREE,
            attributes=[UPN_ATTRIBUTE, attribute],
            paged_size=PAGE_SIZE,
            generator=True,
        )
        for entry in entries:
            if entry.get("type") != "searchResEntry":
                continue
            attributes = entry.get("attributes", {})
            upn = _first_value(attributes.get(UPN_ATTRIBUTE))
            if not upn:
                logger.debug(f"Skipping {entry.get('dn')}: no {UPN_ATTRIBUTE}")
                continue
            index[upn.lower()] = _joined(attributes.get(attribute))
    except LDAPException as e:
        logger.error(f"LDAP error searching {search_base}: {e}")
        raise
    if not index:
        logger.error(f"No affiliated accounts found under {search_base}")
        raise DirectoryReadError(f"Directory search under {search_base} returned no affiliated accounts.")
    logger.info(f"Found {len(index)} active affiliated account(s).")
    return index
