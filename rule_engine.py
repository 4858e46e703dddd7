import logging

from matchers import BoundNodes


logger = logging.getLogger(__name__)


def source_location(node):
    return {
        "file": node.get("file"),
        "line": node.get("line"),
        "column": node.get("column"),
    }


class RuleEngine:
    """
    Evaluates every registered root matcher against a flat list of AST
    nodes and collects the diagnostics the match callbacks report.
    """

    def __init__(self, rules):
        self.rules = rules
        self.registrations = []
        self.diagnostics = []

        for rule in rules:
            rule.engine = self
            rule.register_matchers(self)

    def register(self, matcher, callback):
        self.registrations.append((matcher, callback))

    def report(self, location, message, node=None, check=None):
        self.diagnostics.append(
            {
                "check": check,
                "location": location,
                "message": message,
                "node": node,
            }
        )

    def run(self, nodes):
        self.diagnostics = []

        for node in nodes:
            for matcher, callback in self.registrations:
                bindings = BoundNodes()
                # Check if the root matcher applies to this node
                if matcher.matches(node, bindings):
                    logger.debug(
                        "match at line %s: %s", node.get("line"), sorted(bindings.names())
                    )
                    callback(bindings)

        def line_key(item):
            index, diagnostic = item
            line = diagnostic["location"].get("line")
            column = diagnostic["location"].get("column")
            return (
                line if isinstance(line, int) else 10**9,
                column if isinstance(column, int) else 0,
                index,
            )

        return [d for _, d in sorted(enumerate(self.diagnostics), key=line_key)]
