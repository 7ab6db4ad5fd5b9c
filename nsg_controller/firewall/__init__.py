from .pod_filter import is_target
from .security_groups import (
    RuleSettings,
    SynthesisResult,
    is_managed_rule,
    merge_rules,
    synthesize_rules,
    validate_rule_set,
)

__all__ = [
    "RuleSettings",
    "SynthesisResult",
    "is_managed_rule",
    "is_target",
    "merge_rules",
    "synthesize_rules",
    "validate_rule_set",
]
