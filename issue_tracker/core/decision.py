"""Decision table for loan-issue reports.

Maps (issue type, sub-issue, note keywords) to a recommended action, a fixed
reason and an ordered list of next steps. The table is data: `RULES` is
evaluated top to bottom and the first matching rule wins.

Matching is on `IssueType`, never on the human-readable label, so the copy in
`ISSUE_TYPE_LABELS` can change without changing classification.

`classify()` is pure: no I/O, no clock, no shared state.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Callable, Optional, Union


class IssueType(str, enum.Enum):
    PAN_ISSUE = "pan_issue"
    SWAPPING = "swapping"
    WRONG_DETAILS_BY_SM = "wrong_details_by_sm"
    SYSTEM_ISSUE_UI = "system_issue_ui"
    LINK_EXPIRED = "link_expired"
    RELOGIN_REQUEST = "relogin_request"
    OLD_CASE = "old_case"
    NOT_INTERESTED = "not_interested"
    BT_TOPUP_CASE_ERROR = "bt_topup_case_error"
    OTHER = "other"

    @property
    def label(self) -> str:
        return ISSUE_TYPE_LABELS[self]

    @property
    def category(self) -> str:
        return _title(ISSUE_TYPE_LABELS[self])

    @property
    def sub_issues(self) -> tuple[str, ...]:
        return SUB_ISSUES.get(self, ())

    @classmethod
    def parse(cls, value) -> "IssueType":
        """Resolve a key, label or category title; anything unknown is OTHER."""
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().lower()
        if not text:
            return cls.OTHER
        hit = _ISSUE_LOOKUP.get(text)
        if hit is None and " (" in text:
            hit = _ISSUE_LOOKUP.get(_title(text).lower())
        return hit or cls.OTHER


ISSUE_TYPE_LABELS = {
    IssueType.PAN_ISSUE: "Pan Issue (e.g., mapping error, verification failed, primary PAN available)",
    IssueType.SWAPPING: "Swapping (e.g., reassign applicant to co-applicant or vice versa)",
    IssueType.WRONG_DETAILS_BY_SM: "Wrong Details Updated by SM (e.g., phone no, income, property type wrong)",
    IssueType.SYSTEM_ISSUE_UI: "System Issue UI (e.g., form not accessible, data not saving)",
    IssueType.LINK_EXPIRED: "Link Expired (e.g., Account Aggregator, IMD link)",
    IssueType.RELOGIN_REQUEST: "Relogin Request (e.g., fresh CIBIL pull needed)",
    IssueType.OLD_CASE: "Old Case (e.g., reject to re-login with fresh data)",
    IssueType.NOT_INTERESTED: "Not Interested in Further Loan Process",
    IssueType.BT_TOPUP_CASE_ERROR: "BT/Topup Case Error (e.g., wrong loan type selected)",
    IssueType.OTHER: "Other (free-text fallback)",
}

PRIMARY_PAN_AVAILABLE = "Primary PAN Available"

SUB_ISSUES: dict[IssueType, tuple[str, ...]] = {
    IssueType.PAN_ISSUE: ("Mapping Error", "Verification Failed", PRIMARY_PAN_AVAILABLE, "Duplicate PAN"),
    IssueType.WRONG_DETAILS_BY_SM: (
        "Phone No Wrong",
        "Income Wrong (Yes/No)",
        "Property Type Wrong",
        "Loan Type Wrong",
    ),
    IssueType.LINK_EXPIRED: ("Account Aggregator", "IMD"),
}

ENTITY_OPTIONS = ("Applicant", "Co-applicant")


def _title(label: str) -> str:
    return label.split(" (", 1)[0].strip()


_ISSUE_LOOKUP: dict[str, IssueType] = {}
for _it, _label in ISSUE_TYPE_LABELS.items():
    _ISSUE_LOOKUP[_it.value] = _it
    _ISSUE_LOOKUP[_label.lower()] = _it
    _ISSUE_LOOKUP[_title(_label).lower()] = _it
_ISSUE_LOOKUP["not interested"] = IssueType.NOT_INTERESTED


class Action(str, enum.Enum):
    REJECT_LEAD = "Reject Lead (full or entity-specific)"
    REOPEN_TASK = "Reopen Task (e.g., KYC, Loan & Property Details, Income Details)"
    GENERATE_NEW_LINK = "Generate New Link (e.g., AA, IMD)"
    CHANGE_FIELD = "Change Field (e.g., Income Yes/No, Program Type)"
    MOVE_TO_CPA_TRAY = "Move to CPA Tray"
    RESOLVE_MAPPING = "Resolve Mapping (e.g., provide full phone no)"
    NO_ACTION = "No Action (resolve as is)"
    # Only ever produced by the classifier, never offered on the form.
    MANUAL_REVIEW = "Manual Review"


REQUESTABLE_ACTIONS: tuple[Action, ...] = tuple(a for a in Action if a is not Action.MANUAL_REVIEW)


@dataclass(frozen=True, slots=True)
class IssueReport:
    issue_type: Union[IssueType, str]
    sub_issue: Optional[str] = ""
    notes: Optional[str] = ""
    action_requested: Union[Action, str, None] = ""

    @property
    def kind(self) -> IssueType:
        return IssueType.parse(self.issue_type)

    @property
    def notes_lower(self) -> str:
        return (self.notes or "").lower()


@dataclass(frozen=True, slots=True)
class Decision:
    recommended_action: str
    reason: str
    next_steps: tuple[str, ...]

    def to_dict(self) -> dict:
        return {
            "recommended_action": self.recommended_action,
            "reason": self.reason,
            "next_steps": list(self.next_steps),
        }


@dataclass(frozen=True, slots=True)
class Rule:
    """One row of the table. `when=None` means the row applies unconditionally."""

    issue_types: tuple[IssueType, ...]
    action: Action
    reason: str
    next_steps: tuple[str, ...]
    when: Optional[Callable[[IssueReport], bool]] = None

    def matches(self, kind: IssueType, report: IssueReport) -> bool:
        if kind not in self.issue_types:
            return False
        return self.when is None or self.when(report)


_PAN_REASON = "PAN verification or mapping failure detected. Common in data (e.g., primary PAN available)."
_PAN_STEPS = (
    "Relogin with correct mobile no linked to PAN.",
    "API Call: Check PAN mapping in database (e.g., query for full phone no).",
)
_UI_REASON = "UI error (e.g., form not accessible). Check for intermittent issues."
_UI_STEPS = (
    "Instruct SM to clear cache/relogin.",
    "Escalate to tech if persistent (log error screenshot).",
)
_SM_REASON = "SM error (e.g., wrong phone, income, property). Reopen affected task."
_SM_REOPEN = "API Call: Reopen specific task (e.g., Loan & Property Details)."
_SM_INCOME = "Change income Yes/No via backend update."


def _primary_pan(r: IssueReport) -> bool:
    return (r.sub_issue or "") == PRIMARY_PAN_AVAILABLE or "primary" in r.notes_lower


def _mentions(word: str) -> Callable[[IssueReport], bool]:
    return lambda r: word in r.notes_lower


RULES: tuple[Rule, ...] = (
    Rule((IssueType.PAN_ISSUE,), Action.REJECT_LEAD, _PAN_REASON, _PAN_STEPS, when=_primary_pan),
    Rule((IssueType.PAN_ISSUE,), Action.RESOLVE_MAPPING, _PAN_REASON, _PAN_STEPS),
    Rule(
        (IssueType.SWAPPING,),
        Action.REJECT_LEAD,
        "Role swap required (applicant ↔ co-applicant). Frequent in data for adding to another lead.",
        (
            "Add entity to target lead as opposite of current entity.",
            "API Call: Update LSQ opportunity with new structure.",
        ),
    ),
    Rule(
        (IssueType.WRONG_DETAILS_BY_SM,),
        Action.REOPEN_TASK,
        _SM_REASON,
        (_SM_INCOME, _SM_REOPEN),
        when=_mentions("income"),
    ),
    Rule((IssueType.WRONG_DETAILS_BY_SM,), Action.REOPEN_TASK, _SM_REASON, (_SM_REOPEN,)),
    Rule((IssueType.SYSTEM_ISSUE_UI,), Action.NO_ACTION, _UI_REASON, _UI_STEPS, when=_mentions("resolved")),
    Rule((IssueType.SYSTEM_ISSUE_UI,), Action.REJECT_LEAD, _UI_REASON, _UI_STEPS),
    Rule(
        (IssueType.LINK_EXPIRED,),
        Action.GENERATE_NEW_LINK,
        "AA/IMD link expired. Common timeout issue in data.",
        ("API Call: Regenerate link and send to user.",),
    ),
    Rule(
        (IssueType.RELOGIN_REQUEST, IssueType.OLD_CASE),
        Action.REJECT_LEAD,
        "Old/duplicate case; relogin for fresh CIBIL.",
        ("API Call: Pull fresh CIBIL report after reject.",),
    ),
    Rule(
        (IssueType.NOT_INTERESTED,),
        Action.REJECT_LEAD,
        "Customer disinterest.",
        ("Mark as closed in CRM.",),
    ),
    Rule(
        (IssueType.BT_TOPUP_CASE_ERROR,),
        Action.REOPEN_TASK,
        "Wrong loan type (BT/Topup vs. fresh).",
        ("Update loan type and resubmit.",),
    ),
)

FALLBACK = Rule((IssueType.OTHER,), Action.MANUAL_REVIEW, "Unclassified issue.", ("Escalate to support team.",))


def _requested_text(value) -> str:
    if isinstance(value, Action):
        return value.value
    return str(value or "").strip()


def classify(report: IssueReport) -> Decision:
    kind = report.kind
    rule = next((r for r in RULES if r.matches(kind, report)), FALLBACK)

    reason = rule.reason
    requested = _requested_text(report.action_requested)
    # Audit trail: keep what the submitter asked for when we recommend something else.
    if requested and requested != rule.action.value:
        reason += f" (Overridden from requested: {requested})"

    return Decision(recommended_action=rule.action.value, reason=reason, next_steps=rule.next_steps)
