from .finding import FindingFilters, FindingFlagsUpdate, FindingPayload, FindingRead, finding_id
from .ruleset import Rule, RuleSet
from .work_item import WorkItem, new_item_id

__all__ = [
    "FindingFilters",
    "FindingFlagsUpdate",
    "FindingPayload",
    "FindingRead",
    "finding_id",
    "Rule",
    "RuleSet",
    "WorkItem",
    "new_item_id",
]
