import json
import logging
import os
import sys
import time

from clang.cindex import Diagnostic

from ast_parser import ParseCppError, parse_cpp_file
from ast_walker import walk_ast
from engine_factory import ALL_RULE_GROUPS, build_engine


logger = logging.getLogger(__name__)

RULE_SUGGESTION = (
    "Add EIGEN_MAKE_ALIGNED_OPERATOR_NEW to the class (or define an aligned operator new), "
    "or store the Eigen member through an aligned allocator."
)


class UsageError(ValueError):
    pass


def _round_ms(value):
    return round(max(0.0, float(value)), 3)


def _clang_hint_for_message(text):
    if "unknown type name" in text or "no type named" in text or "no member named" in text:
        return "Include the Eigen headers and pass their directory with --extra-arg -I<dir>."
    if "file not found" in text:
        return "Check include paths; add missing directories with --extra-arg -I<dir>."
    if "expected ';'" in text:
        return "Add a semicolon to end the previous declaration."
    if "expected '}'" in text:
        return "Add the missing '}' to close the class or block."
    if "use of undeclared identifier" in text:
        return "Declare this identifier first, or fix a misspelled name."
    return "Fix this compiler diagnostic; rule checks depend on a clean parse."


def _rule_item(diagnostic):
    location = diagnostic["location"]
    message = diagnostic["message"]
    if message.startswith("[WARN] "):
        message = message[len("[WARN] "):]
    return {
        "severity": "warning",
        "source": "rule",
        "check": diagnostic.get("check"),
        "line": location.get("line"),
        "column": location.get("column"),
        "message": message,
        "suggestion": RULE_SUGGESTION,
    }


def _clang_items(translation_unit, target_file):
    severity_map = {
        Diagnostic.Ignored: "info",
        Diagnostic.Note: "info",
        Diagnostic.Warning: "warning",
        Diagnostic.Error: "error",
        Diagnostic.Fatal: "error",
    }
    items = []

    for diag in translation_unit.diagnostics:
        loc = diag.location
        loc_file = loc.file.name if loc and loc.file else None
        if loc_file and os.path.realpath(loc_file) != target_file:
            continue

        items.append(
            {
                "severity": severity_map.get(diag.severity, "info"),
                "source": "clang",
                "check": None,
                "line": loc.line if loc else None,
                "column": loc.column if loc else None,
                "message": diag.spelling,
                "suggestion": _clang_hint_for_message(diag.spelling.lower()),
            }
        )

    return items


def _has_blocking_parse_errors(clang_items):
    return any(item.get("severity") == "error" for item in clang_items)


def _limited_analysis_item(first_error_line=None):
    return {
        "severity": "warning",
        "source": "runtime",
        "check": None,
        "line": first_error_line if isinstance(first_error_line, int) else None,
        "column": None,
        "message": (
            "Rule-based checks were limited because parser errors were found. "
            "Fix parser errors first, then run analysis again."
        ),
        "suggestion": "Resolve syntax/parse errors first; rule warnings need a complete AST.",
    }


def _summary(items):
    out = {"error": 0, "warning": 0, "info": 0}
    by_check = {}
    for item in items:
        sev = item.get("severity", "info")
        if sev not in out:
            sev = "info"
        out[sev] += 1

        check = item.get("check")
        if check:
            by_check[check] = by_check.get(check, 0) + 1

    out["total"] = out["error"] + out["warning"] + out["info"]
    out["by_check"] = by_check
    return out


def _sort_items(items):
    severity_rank = {"error": 0, "warning": 1, "info": 2}
    return sorted(
        items,
        key=lambda i: (
            i.get("line") if isinstance(i.get("line"), int) else 10**9,
            severity_rank.get(i.get("severity", "info"), 3),
            i.get("source", ""),
        ),
    )


def _timing_ms(parse_ms, traversal_ms, interpretation_ms):
    total = parse_ms + traversal_ms + interpretation_ms
    return {
        "parse": _round_ms(parse_ms),
        "traversal": _round_ms(traversal_ms),
        "interpretation": _round_ms(interpretation_ms),
        "total": _round_ms(total),
    }


def _explanation(item):
    prefix = "[ERROR]" if item.get("severity") == "error" else "[WARN]"
    location_parts = []
    if isinstance(item.get("line"), int):
        location_parts.append(f"line {item['line']}")
    if isinstance(item.get("column"), int):
        location_parts.append(f"column {item['column']}")
    location = f" ({', '.join(location_parts)})" if location_parts else ""
    return f"{prefix} {item.get('message', '').strip()}{location}"


def _pop_option(args, flag):
    if flag not in args:
        return args, None
    idx = args.index(flag)
    if idx + 1 >= len(args):
        raise UsageError(f"Missing value after {flag}.")
    return args[:idx] + args[idx + 2 :], args[idx + 1]


def parse_args(args):
    options = {
        "json_mode": True,
        "debug": False,
        "groups": None,
        "unsafe_types": None,
        "extra_args": [],
        "files": [],
    }

    if "--text" in args:
        options["json_mode"] = False
        args = [a for a in args if a != "--text"]
    if "--debug" in args:
        options["debug"] = True
        args = [a for a in args if a != "--debug"]

    while "--extra-arg" in args:
        args, value = _pop_option(args, "--extra-arg")
        options["extra_args"].append(value)

    args, raw_groups = _pop_option(args, "--groups")
    if raw_groups is not None:
        groups = [g.strip().lower() for g in raw_groups.split(",") if g.strip()]
        if not groups:
            raise UsageError("--groups needs at least one group name.")
        unknown = sorted({g for g in groups if g not in ALL_RULE_GROUPS})
        if unknown:
            raise UsageError(
                "Unknown rule group(s): "
                + ", ".join(unknown)
                + ". Valid groups: "
                + ", ".join(sorted(ALL_RULE_GROUPS))
                + "."
            )
        options["groups"] = groups

    args, raw_types = _pop_option(args, "--unsafe-types")
    if raw_types is not None:
        types = frozenset(t.strip() for t in raw_types.split(",") if t.strip())
        if not types:
            raise UsageError("--unsafe-types needs at least one type name.")
        options["unsafe_types"] = types

    options["files"] = args
    return options


def _failed_result(display_name, target_file, message, timing):
    return {
        "file": display_name,
        "path": target_file,
        "ok": False,
        "error": message,
        "explanations": [],
        "items": [
            {
                "severity": "error",
                "source": "runtime",
                "check": None,
                "line": None,
                "column": None,
                "message": message,
                "suggestion": (
                    "Check that the file exists, then run "
                    "clang++ -std=gnu++17 -fsyntax-only <file> for detailed syntax diagnostics."
                ),
            }
        ],
        "summary": {"error": 1, "warning": 0, "info": 0, "total": 1, "by_check": {}},
        "timing_ms": timing,
    }


def analyze_file(filename, engine, extra_args=None):
    display_name = os.path.basename(filename)
    target_file = os.path.realpath(filename)

    parse_start = time.perf_counter()
    try:
        translation_unit = parse_cpp_file(filename, extra_args=extra_args)
    except ParseCppError as exc:
        parse_ms = (time.perf_counter() - parse_start) * 1000.0
        logger.debug("parse failed for %s: %s", filename, exc)
        message = f"Failed to parse {display_name}: {exc}"
        return _failed_result(display_name, target_file, message, _timing_ms(parse_ms, 0.0, 0.0))

    parse_ms = (time.perf_counter() - parse_start) * 1000.0

    traversal_start = time.perf_counter()
    nodes = []
    walk_ast(translation_unit.cursor, nodes, main_file=target_file)
    traversal_ms = (time.perf_counter() - traversal_start) * 1000.0

    clang_items = _clang_items(translation_unit, target_file)
    blocking_parse_errors = _has_blocking_parse_errors(clang_items)

    interpretation_ms = 0.0
    rule_items = []
    if not blocking_parse_errors:
        interpretation_start = time.perf_counter()
        rule_items = [_rule_item(d) for d in engine.run(nodes)]
        interpretation_ms = (time.perf_counter() - interpretation_start) * 1000.0

    combined_items = list(clang_items) + list(rule_items)
    if blocking_parse_errors:
        error_lines = [item.get("line") for item in clang_items if item.get("severity") == "error"]
        first_error_line = min((ln for ln in error_lines if isinstance(ln, int)), default=None)
        combined_items.append(_limited_analysis_item(first_error_line))

    items = _sort_items(combined_items)
    return {
        "file": display_name,
        "path": target_file,
        "ok": True,
        "error": None,
        "explanations": [_explanation(i) for i in items if i.get("source") == "rule"],
        "items": items,
        "summary": _summary(items),
        "timing_ms": _timing_ms(parse_ms, traversal_ms, interpretation_ms),
    }


def _print_text(result, multiple):
    if multiple:
        print(f"=== {result['file']} ===")

    if not result["ok"]:
        print(result["error"])
    elif result["explanations"]:
        for explanation in result["explanations"]:
            print(explanation)
    else:
        for item in result["items"]:
            if item.get("severity") not in {"error", "warning"}:
                continue
            print(_explanation(item))

    timing = result["timing_ms"]
    print(
        f"[timing] parse: {timing['parse']} ms, traversal: {timing['traversal']} ms, "
        f"interpretation: {timing['interpretation']} ms, total: {timing['total']} ms."
    )


def main(argv=None):
    args = list(sys.argv[1:] if argv is None else argv)
    json_mode = "--text" not in args

    try:
        options = parse_args(args)
    except UsageError as exc:
        if json_mode:
            print(json.dumps({"ok": False, "error": str(exc)}))
        else:
            print(exc)
        return

    logging.basicConfig(
        level=logging.DEBUG if options["debug"] else logging.WARNING,
        format="%(name)s: %(message)s",
        stream=sys.stderr,
    )

    files = options["files"]
    if not files:
        if json_mode:
            print(json.dumps({"ok": False, "error": "No files provided."}))
        else:
            print("No files provided.")
        return

    selected_groups = sorted(set(options["groups"]) if options["groups"] is not None else ALL_RULE_GROUPS)
    engine = build_engine(selected_groups, unsafe_types=options["unsafe_types"])

    overall_start = time.perf_counter()
    results = []
    for idx, filename in enumerate(files):
        result = analyze_file(filename, engine, extra_args=options["extra_args"])
        result["rule_groups"] = selected_groups
        results.append(result)

        if not json_mode:
            _print_text(result, len(files) > 1)
            if idx < len(files) - 1:
                print()

    if json_mode:
        total_ms = _round_ms((time.perf_counter() - overall_start) * 1000.0)
        print(
            json.dumps(
                {
                    "ok": True,
                    "results": results,
                    "timing_ms": {"total": total_ms},
                    "rule_groups": selected_groups,
                }
            )
        )


if __name__ == "__main__":
    main()
