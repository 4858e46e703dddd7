import logging
import os
import subprocess
import sys

from clang import cindex


logger = logging.getLogger(__name__)

_LIBRARY_NAMES = ("libclang.so", "libclang.dylib", "libclang.dll")


def _library_in(directory):
    for name in _LIBRARY_NAMES:
        for rel in (name, os.path.join("lib", name)):
            candidate = os.path.join(directory, rel)
            if os.path.exists(candidate):
                return candidate
    return None


def _find_libclang():
    env_path = os.environ.get("LIBCLANG_FILE") or os.environ.get("LIBCLANG_PATH")
    if env_path:
        if os.path.isdir(env_path):
            candidate = _library_in(env_path)
            if candidate:
                return candidate
        elif os.path.exists(env_path):
            return env_path

    if getattr(sys, "frozen", False):
        base = getattr(sys, "_MEIPASS", None)
        if base:
            candidate = _library_in(base)
            if candidate:
                return candidate

    here = os.path.abspath(os.path.dirname(__file__))
    candidate = _library_in(here)
    if candidate:
        return candidate

    for candidate in (
        "/opt/homebrew/opt/llvm/lib/libclang.dylib",
        "/usr/local/opt/llvm/lib/libclang.dylib",
    ):
        if os.path.exists(candidate):
            return candidate

    # Fall back to the binding's own lookup (the libclang wheel ships its library).
    return None


libclang_path = _find_libclang()
if libclang_path and not cindex.Config.loaded:
    logger.debug("using libclang at %s", libclang_path)
    cindex.Config.set_library_file(libclang_path)


class ParseCppError(RuntimeError):
    pass


def _translation_unit_failure_hint(filename):
    base = os.path.basename(filename)
    return (
        f"Could not parse '{base}'. "
        "This usually means severe syntax errors or missing C++ headers/toolchain paths. "
        "Try: clang++ -std=gnu++17 -fsyntax-only <file> to see compiler diagnostics, "
        "and pass include paths with --extra-arg -I<dir> (for example the Eigen headers)."
    )


def _sdk_args():
    if sys.platform != "darwin":
        return []
    try:
        sdk_path = subprocess.check_output(
            ["xcrun", "--show-sdk-path"],
            stderr=subprocess.DEVNULL,
            text=True,
        ).strip()
    except (OSError, subprocess.CalledProcessError):
        return []
    if not sdk_path:
        return []
    return [
        "-isysroot",
        sdk_path,
        "-I",
        os.path.join(sdk_path, "usr/include/c++/v1"),
    ]


def parse_cpp_file(filename, extra_args=None):
    if not os.path.exists(filename):
        raise ParseCppError(f"Input file does not exist: {filename}")
    if not os.path.isfile(filename):
        raise ParseCppError(f"Input path is not a file: {filename}")

    index = cindex.Index.create()
    default_args = [
        "-x", "c++",
        "-std=gnu++17",
    ] + _sdk_args()
    args = default_args + list(extra_args or [])
    options = cindex.TranslationUnit.PARSE_DETAILED_PROCESSING_RECORD

    logger.debug("parsing %s with args %s", filename, args)
    try:
        return index.parse(filename, args=args, options=options)
    except cindex.TranslationUnitLoadError as exc:
        raise ParseCppError(_translation_unit_failure_hint(filename)) from exc
