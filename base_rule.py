from rule_engine import source_location


class BaseRule:
    """
    A check registers its root matchers with the engine and receives
    the bound nodes of every successful match in ``check``.
    """

    name = None

    def register_matchers(self, engine):
        raise NotImplementedError("register_matchers() must be implemented")

    def check(self, bindings):
        raise NotImplementedError("check() must be implemented")

    def diag(self, node, message):
        self.engine.report(source_location(node), message, node, check=self.name)
