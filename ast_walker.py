import logging
import os

from clang.cindex import CursorKind

from matchers import RECORD_KINDS


logger = logging.getLogger(__name__)

# Cursor kinds that open a named scope for qualified names.
SCOPE_KINDS = RECORD_KINDS | {CursorKind.NAMESPACE}


def _realpath(path, cache):
    cached = cache.get(path)
    if cached is None:
        cached = os.path.realpath(path)
        cache[path] = cached
    return cached


def _is_anonymous(cursor):
    return cursor.kind in SCOPE_KINDS and cursor.is_anonymous()


def _qualified_name(cursor):
    if cursor.kind not in SCOPE_KINDS:
        return cursor.spelling
    # Scope follows semantic parents, not the lexical walk.
    parts = []
    current = cursor
    while current is not None and current.kind in SCOPE_KINDS:
        if _is_anonymous(current) or not current.spelling:
            parts.append("(anonymous)")
        else:
            parts.append(current.spelling)
        current = current.semantic_parent
    return "::".join(reversed(parts))


def _type_spelling(cursor):
    try:
        return cursor.type.spelling
    except ValueError:
        # Cursors whose type kind is unknown to this binding version.
        return ""


def walk_ast(cursor, nodes, *, parent=None, target_file=None, main_file=None, _realpath_cache=None):
    """
    Recursively walks a Clang AST cursor and collects all nodes
    into a flat list (pre-order, document order) for the rule engine.

    Each node also keeps its children and parent for matchers that
    need structure. ``target_file`` drops nodes from other files;
    ``main_file`` only marks them via ``in_main_file``.
    """

    if _realpath_cache is None:
        _realpath_cache = {}

    cursor_file = cursor.location.file.name if cursor.location.file else None
    real_file = _realpath(cursor_file, _realpath_cache) if cursor_file else None
    if target_file and real_file and real_file != target_file:
        return None

    name = cursor.spelling
    node = {
        "kind": cursor.kind,
        "name": name,
        "qualified_name": _qualified_name(cursor),
        "anonymous": _is_anonymous(cursor),
        "type": _type_spelling(cursor),
        "line": cursor.location.line,
        "column": cursor.location.column,
        "children": [],
        "cursor": cursor,
        "parent": parent,
        "file": cursor_file,
        "in_main_file": bool(main_file and real_file == main_file),
    }

    nodes.append(node)
    logger.debug("VISITING: %s %s", cursor.kind, name)

    for child in cursor.get_children():
        child_node = walk_ast(
            child,
            nodes,
            parent=node,
            target_file=target_file,
            main_file=main_file,
            _realpath_cache=_realpath_cache,
        )
        if child_node is not None:
            node["children"].append(child_node)

    return node
