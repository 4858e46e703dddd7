from clang.cindex import CursorKind


RECORD_KINDS = {
    CursorKind.STRUCT_DECL,
    CursorKind.CLASS_DECL,
    CursorKind.UNION_DECL,
    CursorKind.CLASS_TEMPLATE,
    CursorKind.CLASS_TEMPLATE_PARTIAL_SPECIALIZATION,
}

METHOD_KINDS = {
    CursorKind.CXX_METHOD,
    CursorKind.FUNCTION_TEMPLATE,
    CursorKind.CONSTRUCTOR,
    CursorKind.DESTRUCTOR,
    CursorKind.CONVERSION_FUNCTION,
}


class UnboundNodeError(LookupError):
    """
    Raised when a callback asks for a binding the match never captured.
    """

    def __init__(self, name, bound):
        self.name = name
        self.bound = sorted(bound)
        super().__init__(
            f"No node bound as '{name}' (bound: {', '.join(self.bound) or 'none'})."
        )


class BoundNodes:
    """
    Named nodes captured by one successful root match.

    ``bindings[name]`` fails loudly for names that were never bound;
    use ``name in bindings`` or ``bindings.get(name)`` to test presence.
    """

    def __init__(self, nodes=None):
        self._nodes = dict(nodes or {})

    def scratch(self):
        return BoundNodes(self._nodes)

    def merge(self, other):
        self._nodes.update(other._nodes)

    def add(self, name, node):
        self._nodes[name] = node

    def get(self, name, default=None):
        return self._nodes.get(name, default)

    def names(self):
        return set(self._nodes)

    def __getitem__(self, name):
        try:
            return self._nodes[name]
        except KeyError:
            raise UnboundNodeError(name, self._nodes) from None

    def __contains__(self, name):
        return name in self._nodes

    def __len__(self):
        return len(self._nodes)

    def __repr__(self):
        return f"BoundNodes({sorted(self._nodes)})"


class Matcher:
    def matches(self, node, bindings):
        raise NotImplementedError("matches() must be implemented")


class KindIs(Matcher):
    def __init__(self, kinds):
        self.kinds = frozenset(kinds)

    def matches(self, node, bindings):
        return node.get("kind") in self.kinds


class HasName(Matcher):
    def __init__(self, name):
        self.name = name

    def matches(self, node, bindings):
        return node.get("name") == self.name


class TypeIs(Matcher):
    """
    Exact comparison against the declared type as spelled in the source.
    No alias or subtype resolution happens here.
    """

    def __init__(self, type_name):
        self.type_name = type_name

    def matches(self, node, bindings):
        return node.get("type") == self.type_name


class IsExpansionInMainFile(Matcher):
    def matches(self, node, bindings):
        return bool(node.get("in_main_file"))


class IsAnonymous(Matcher):
    """
    Unnamed struct or union whose members belong to the enclosing record.
    """

    def matches(self, node, bindings):
        return bool(node.get("anonymous"))


class Unless(Matcher):
    def __init__(self, matcher):
        self.matcher = matcher

    def matches(self, node, bindings):
        return not self.matcher.matches(node, bindings.scratch())


class AllOf(Matcher):
    def __init__(self, *matchers):
        self.matchers = matchers

    def matches(self, node, bindings):
        local = bindings.scratch()
        for matcher in self.matchers:
            if not matcher.matches(node, local):
                return False
        bindings.merge(local)
        return True


class AnyOf(Matcher):
    def __init__(self, *matchers):
        self.matchers = matchers

    def matches(self, node, bindings):
        for matcher in self.matchers:
            local = bindings.scratch()
            if matcher.matches(node, local):
                bindings.merge(local)
                return True
        return False


class HasDescendant(Matcher):
    """
    Searches the subtree below ``node`` (pre-order, document order) for the
    first node that satisfies ``matcher``. The node itself is not tested.

    Subtrees rooted at a node satisfying ``prune`` are skipped entirely.
    """

    def __init__(self, matcher, prune=None):
        self.matcher = matcher
        self.prune = prune

    def _skipped(self, node):
        return self.prune is not None and self.prune.matches(node, BoundNodes())

    def matches(self, node, bindings):
        stack = list(reversed(node.get("children", [])))
        while stack:
            current = stack.pop()
            if self._skipped(current):
                continue
            local = bindings.scratch()
            if self.matcher.matches(current, local):
                bindings.merge(local)
                return True
            stack.extend(reversed(current.get("children", [])))
        return False


class Bind(Matcher):
    def __init__(self, name, matcher):
        self.name = name
        self.matcher = matcher

    def matches(self, node, bindings):
        local = bindings.scratch()
        if not self.matcher.matches(node, local):
            return False
        local.add(self.name, node)
        bindings.merge(local)
        return True


def kind_is(*kinds):
    return KindIs(kinds)


def record_decl():
    return KindIs(RECORD_KINDS)


def field_decl():
    return KindIs({CursorKind.FIELD_DECL})


def method_decl():
    return KindIs(METHOD_KINDS)


def has_name(name):
    return HasName(name)


def type_is(type_name):
    return TypeIs(type_name)


def is_expansion_in_main_file():
    return IsExpansionInMainFile()


def is_anonymous():
    return IsAnonymous()


def unless(matcher):
    return Unless(matcher)


def all_of(*matchers):
    return AllOf(*matchers)


def any_of(*matchers):
    return AnyOf(*matchers)


def has_descendant(matcher, prune=None):
    return HasDescendant(matcher, prune=prune)


def bind(name, matcher):
    return Bind(name, matcher)
