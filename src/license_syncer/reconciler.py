from dataclasses import dataclass, field
from enum import Enum

from license_syncer.config import SCOPE_STUDENT
from license_syncer.report import RunLog


class Decision(Enum):
    ASSIGN_STUDENT_SKU = "student"
    ASSIGN_FACULTY_STAFF_SKU = "faculty/staff"
    NO_ACTION = "none"


@dataclass
class IdentityAccount:
    """A Graph user as seen by the sync."""

    id: str
    user_principal_name: str
    usage_location: str | None = None
    licenses: list[str] = field(default_factory=list)
    synchronized: bool = True


@dataclass(frozen=True)
class AffiliationRule:
    """Matches when any keyword occurs in the affiliation, ignoring case."""

    keywords: tuple[str, ...]
    decision: Decision

    def matches(self, affiliation: str) -> bool:
        folded = affiliation.casefold()
        return any(keyword.casefold() in folded for keyword in self.keywords)


# Order matters: the first matching rule wins, so students always get the
# student SKU even when they are also staff.
STUDENT_RULE = AffiliationRule(("Student",), Decision.ASSIGN_STUDENT_SKU)
FACULTY_STAFF_RULE = AffiliationRule(("Faculty", "Staff"), Decision.ASSIGN_FACULTY_STAFF_SKU)
DEFAULT_RULES = (STUDENT_RULE, FACULTY_STAFF_RULE)


def rules_for_scope(scope: str) -> tuple[AffiliationRule, ...]:
    if scope == SCOPE_STUDENT:
        return (STUDENT_RULE,)
    return DEFAULT_RULES


def decide(
    account: IdentityAccount,
    directory_index: dict[str, str],
    run_log: RunLog,
    rules: tuple[AffiliationRule, ...] = DEFAULT_RULES,
) -> Decision:
    """
    Decides which SKU, if any, an unlicensed account should receive.

    Args:
        account: The unlicensed Graph account.
        directory_index: Lower-cased UPN to affiliation, from the directory read.
        run_log: Receives a line for every account that is skipped.
        rules: Precedence-ordered rules; the first match wins.

    Returns:
        Decision: The action to take for this account.
    """
    upn = account.user_principal_name
    affiliation = directory_index.get(upn.lower())
    if affiliation is None:
        run_log.info(f"{upn} is not an active account, skipped")
        return Decision.NO_ACTION

    for rule in rules:
        if rule.matches(affiliation):
            return rule.decision

    run_log.warning(f"{upn} has unrecognized affiliation '{affiliation}', skipped")
    return Decision.NO_ACTION
