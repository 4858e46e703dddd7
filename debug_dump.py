import os
import sys

from clang.cindex import CursorKind

from ast_parser import parse_cpp_file
from ast_walker import walk_ast
from matchers import RECORD_KINDS, method_decl


def _parent_chain(node, limit=3):
    chain = []
    cur = node.get("parent")
    while cur is not None and len(chain) < limit:
        chain.append(str(cur.get("kind")))
        cur = cur.get("parent")
    return " -> ".join(chain)


def is_interesting(node):
    kind = node.get("kind")
    if kind in RECORD_KINDS or method_decl().matches(node, None):
        return True
    return kind == CursorKind.FIELD_DECL


def describe_node(node):
    """One line per node; shows the type spelling that --unsafe-types compares against."""
    return (
        f"line={node.get('line')} col={node.get('column')} kind={node.get('kind')} "
        f"name={node.get('qualified_name') or node.get('name')} type={node.get('type')!r} "
        f"parents={_parent_chain(node)}"
    )


def main():
    if len(sys.argv) < 2:
        print("Usage: python3 debug_dump.py <file> [line_start] [line_end]")
        sys.exit(1)

    filename = sys.argv[1]
    line_start = int(sys.argv[2]) if len(sys.argv) > 2 else None
    line_end = int(sys.argv[3]) if len(sys.argv) > 3 else None

    tu = parse_cpp_file(filename)
    nodes = []
    walk_ast(tu.cursor, nodes, target_file=os.path.realpath(filename))

    for n in nodes:
        line = n.get("line")
        if line_start is not None and line_end is not None:
            if line is None or line < line_start or line > line_end:
                continue
        elif not is_interesting(n):
            continue

        print(describe_node(n))


if __name__ == "__main__":
    main()
