import logging

from base_rule import BaseRule
from matchers import (
    all_of,
    any_of,
    bind,
    field_decl,
    has_descendant,
    has_name,
    is_anonymous,
    is_expansion_in_main_file,
    method_decl,
    record_decl,
    type_is,
    unless,
)


logger = logging.getLogger(__name__)

# Fixed-size Eigen types whose heap allocation needs aligned operator new.
EIGEN_FIXED_SIZE_TYPES = frozenset(
    {
        "Eigen::Matrix2f",
        "Eigen::Matrix3f",
        "Eigen::Matrix4f",
        "Eigen::MatrixXf",
        "Eigen::Matrix2d",
        "Eigen::Matrix3d",
        "Eigen::Matrix4d",
        "Eigen::MatrixXd",
        "Eigen::Vector2f",
        "Eigen::Vector3f",
        "Eigen::Vector4f",
        "Eigen::VectorXf",
        "Eigen::Vector2d",
        "Eigen::Vector3d",
        "Eigen::Vector4d",
        "Eigen::VectorXd",
    }
)

ALLOCATION_OVERRIDE_NAMES = frozenset({"operator new"})


class EigenOperatorNewRule(BaseRule):
    """
    Warns when a class or struct stores a fixed-size Eigen member but
    does not provide its own operator new (e.g. via
    EIGEN_MAKE_ALIGNED_OPERATOR_NEW).

    Members and operator new count only for the innermost named record
    that declares them; nested named records are checked on their own,
    while anonymous struct/union members count for the enclosing record.
    """

    name = "performance-eigen-has-operator-new"

    def __init__(self, unsafe_types=EIGEN_FIXED_SIZE_TYPES, override_names=ALLOCATION_OVERRIDE_NAMES):
        self.unsafe_types = frozenset(unsafe_types)
        self.override_names = frozenset(override_names)

    def register_matchers(self, engine):
        named_record = all_of(record_decl(), unless(is_anonymous()))

        alloc_override = all_of(
            method_decl(),
            any_of(*[has_name(n) for n in sorted(self.override_names)]),
        )
        unsafe_field = all_of(
            field_decl(),
            any_of(*[type_is(t) for t in sorted(self.unsafe_types)]),
        )

        engine.register(
            bind(
                "cls",
                all_of(
                    named_record,
                    is_expansion_in_main_file(),
                    any_of(
                        has_descendant(bind("alloc-override", alloc_override), prune=named_record),
                        has_descendant(bind("unsafe-field", unsafe_field), prune=named_record),
                    ),
                ),
            ),
            self.check,
        )

    def check(self, bindings):
        if "unsafe-field" not in bindings or "alloc-override" in bindings:
            return

        cls = bindings["cls"]
        field = bindings["unsafe-field"]
        class_name = cls.get("qualified_name") or cls.get("name") or "anonymous"
        logger.debug("%s: unsafe member '%s' without operator new", class_name, field.get("name"))

        self.diag(
            cls,
            f"[WARN] Class '{class_name}' declared on line {cls.get('line')} has fixed-size Eigen "
            f"member '{field.get('name')}' of type '{field.get('type')}' but no aligned operator new.",
        )
