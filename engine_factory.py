from rule_engine import RuleEngine

from eigen_operator_new_rule import EIGEN_FIXED_SIZE_TYPES, EigenOperatorNewRule


ALL_RULE_GROUPS = {"performance"}


def _normalized_groups(enabled_groups):
    if not enabled_groups:
        return set(ALL_RULE_GROUPS)
    return {g for g in enabled_groups if g in ALL_RULE_GROUPS}


def build_engine(enabled_groups=None, unsafe_types=None):
    groups = _normalized_groups(enabled_groups)
    rules = []

    if "performance" in groups:
        rules.append(
            EigenOperatorNewRule(
                unsafe_types=unsafe_types if unsafe_types is not None else EIGEN_FIXED_SIZE_TYPES
            )
        )

    return RuleEngine(rules)
