import json
import subprocess
import sys
import tempfile
import textwrap
import unittest
from pathlib import Path

from clang import cindex


ROOT = Path(__file__).resolve().parents[1]
ENGINE = ROOT / "check_engine.py"
VENV_PY = ROOT / ".venv" / "bin" / "python"
PYTHON = VENV_PY if VENV_PY.exists() else Path(sys.executable)

EIGEN_STUB = """
typedef decltype(sizeof(0)) size_t;

namespace Eigen {
template <typename Scalar, int Rows, int Cols>
class Matrix {
public:
    Scalar coeffs[Rows * Cols];
};
typedef Matrix<float, 4, 4> Matrix4f;
typedef Matrix<double, 3, 3> Matrix3d;
typedef Matrix<double, 3, 1> Vector3d;
}
"""


def _libclang_available():
    try:
        cindex.Index.create()
    except cindex.LibclangError:
        return False
    return True


def line_of(code, needle):
    for number, text in enumerate(textwrap.dedent(code).splitlines(), start=1):
        if needle in text:
            return number
    raise AssertionError(f"{needle!r} not found in fixture")


def run_engine(code, filename="fixture.cpp", extra_files=None, args=None):
    with tempfile.TemporaryDirectory() as td:
        src = Path(td) / filename
        src.write_text(textwrap.dedent(code), encoding="utf-8")
        for name, content in (extra_files or {}).items():
            (Path(td) / name).write_text(textwrap.dedent(content), encoding="utf-8")

        cmd = [str(PYTHON), str(ENGINE)]
        cmd.extend(args or [])
        cmd.append(str(src))

        proc = subprocess.run(
            cmd,
            cwd=ROOT,
            capture_output=True,
            text=True,
            check=False,
        )
        if proc.returncode != 0:
            raise RuntimeError(f"Engine failed:\nSTDOUT:\n{proc.stdout}\nSTDERR:\n{proc.stderr}")

        payload = json.loads(proc.stdout)
        if payload.get("ok") is not True:
            raise RuntimeError(f"Unexpected payload: {payload}")

        results = payload.get("results", [])
        if len(results) != 1:
            raise RuntimeError(f"Expected one result entry, got {len(results)}")

        return payload, results[0]


def rule_items(result):
    return [item for item in result.get("items", []) if item.get("source") == "rule"]


@unittest.skipUnless(_libclang_available(), "libclang shared library is not available")
class RegressionRulesTest(unittest.TestCase):
    def test_struct_with_fixed_size_member_is_reported(self):
        code = EIGEN_STUB + """
            struct Pose {
                Eigen::Matrix4f transform;
            };
            """
        _payload, result = run_engine(code)

        items = rule_items(result)
        self.assertEqual(len(items), 1, result)
        self.assertEqual(items[0]["line"], line_of(code, "struct Pose"))
        self.assertEqual(items[0]["check"], "performance-eigen-has-operator-new")
        self.assertIn("Class 'Pose'", items[0]["message"])
        self.assertIn("'transform'", items[0]["message"])
        self.assertIsNotNone(items[0]["suggestion"])

    def test_operator_new_suppresses_the_warning(self):
        code = EIGEN_STUB + """
            struct Pose {
                Eigen::Matrix4f transform;
                void* operator new(size_t size);
            };
            """
        _payload, result = run_engine(code)
        self.assertEqual(rule_items(result), [])

    def test_plain_struct_is_not_reported(self):
        code = EIGEN_STUB + """
            struct Counter {
                int x;
            };
            """
        _payload, result = run_engine(code)
        self.assertEqual(rule_items(result), [])

    def test_nested_struct_is_reported_on_inner_declaration(self):
        code = EIGEN_STUB + """
            struct Outer {
                struct Inner {
                    Eigen::Matrix4f m;
                };
            };
            """
        _payload, result = run_engine(code)

        items = rule_items(result)
        self.assertEqual(len(items), 1, result)
        self.assertEqual(items[0]["line"], line_of(code, "struct Inner"))
        self.assertIn("Class 'Outer::Inner'", items[0]["message"])

    def test_anonymous_union_member_is_covered_by_enclosing_operator_new(self):
        code = EIGEN_STUB + """
            struct Pose {
                union {
                    Eigen::Matrix4f transform;
                    float raw[16];
                };
                void* operator new(size_t size);
            };
            """
        _payload, result = run_engine(code)
        self.assertEqual(rule_items(result), [])

    def test_anonymous_union_member_is_reported_on_enclosing_class(self):
        code = EIGEN_STUB + """
            struct Pose {
                union {
                    Eigen::Matrix4f transform;
                };
            };
            """
        _payload, result = run_engine(code)

        items = rule_items(result)
        self.assertEqual(len(items), 1, result)
        self.assertEqual(items[0]["line"], line_of(code, "struct Pose"))
        self.assertIn("Class 'Pose'", items[0]["message"])
        self.assertNotIn("anonymous", items[0]["message"])

    def test_out_of_line_nested_definition_keeps_enclosing_scope(self):
        code = EIGEN_STUB + """
            struct Outer {
                struct Inner;
            };

            struct Outer::Inner {
                Eigen::Matrix4f m;
            };
            """
        _payload, result = run_engine(code)

        items = rule_items(result)
        self.assertEqual(len(items), 1, result)
        self.assertEqual(items[0]["line"], line_of(code, "struct Outer::Inner"))
        self.assertIn("Class 'Outer::Inner'", items[0]["message"])

    def test_anonymous_namespace_is_labelled_in_class_name(self):
        code = EIGEN_STUB + """
            namespace {
            struct Pose {
                Eigen::Matrix4f transform;
            };
            }
            """
        _payload, result = run_engine(code)

        items = rule_items(result)
        self.assertEqual(len(items), 1, result)
        self.assertIn("Class '(anonymous)::Pose'", items[0]["message"])

    def test_one_warning_per_class_with_many_members(self):
        code = EIGEN_STUB + """
            class Camera {
                Eigen::Matrix3d intrinsics;
                Eigen::Vector3d position;
                int id;
            };
            """
        _payload, result = run_engine(code)

        items = rule_items(result)
        self.assertEqual(len(items), 1, result)
        self.assertIn("'intrinsics'", items[0]["message"])

    def test_declarations_in_included_headers_are_ignored(self):
        header = EIGEN_STUB + """
            struct FromHeader {
                Eigen::Matrix4f m;
            };
            """
        code = """
            #include "pose.h"

            struct Local {
                Eigen::Vector3d v;
            };
            """
        _payload, result = run_engine(code, extra_files={"pose.h": header})

        items = rule_items(result)
        self.assertEqual(len(items), 1, result)
        self.assertIn("Class 'Local'", items[0]["message"])

    def test_custom_unsafe_types(self):
        code = EIGEN_STUB + """
            struct Pose {
                Eigen::Matrix4f transform;
            };
            """
        _payload, result = run_engine(code, args=["--unsafe-types", "Eigen::Vector3d"])
        self.assertEqual(rule_items(result), [])

    def test_parse_errors_limit_rule_checks(self):
        _payload, result = run_engine(
            """
            struct Pose {
                Eigen::Matrix4f transform;
            };
            """
        )

        items = result.get("items", [])
        clang_errors = [i for i in items if i.get("source") == "clang" and i.get("severity") == "error"]
        self.assertTrue(clang_errors, "Expected clang errors for the unknown Eigen namespace")
        self.assertTrue(
            any(
                i.get("source") == "runtime"
                and "Rule-based checks were limited because parser errors were found." in (i.get("message") or "")
                for i in items
            ),
            "Expected analysis-limited runtime warning when parse errors are present",
        )
        self.assertEqual(rule_items(result), [])

    def test_output_metadata_and_stage_timing_exist(self):
        code = EIGEN_STUB + """
            struct Pose {
                Eigen::Matrix4f transform;
            };
            """
        payload, result = run_engine(code)

        self.assertEqual(payload.get("rule_groups"), ["performance"])
        self.assertEqual(result["file"], "fixture.cpp")
        self.assertTrue(result["path"].endswith("fixture.cpp"))
        self.assertNotIn("is_pasted", result)
        self.assertEqual(result["summary"]["by_check"], {"performance-eigen-has-operator-new": 1})

        timing = result.get("timing_ms", {})
        for key in ("parse", "traversal", "interpretation", "total"):
            self.assertIn(key, timing)
            self.assertIsInstance(timing[key], (int, float))
            self.assertGreaterEqual(timing[key], 0)

        top_timing = payload.get("timing_ms", {})
        self.assertIn("total", top_timing)
        self.assertGreaterEqual(top_timing["total"], 0)

    def test_file_name_is_reported_as_given(self):
        code = EIGEN_STUB + """
            struct Counter {
                int x;
            };
            """
        _payload, result = run_engine(code, filename="pasted.cpp")
        self.assertEqual(result["file"], "pasted.cpp")
        self.assertTrue(result["path"].endswith("pasted.cpp"))

    def test_missing_file_is_reported_per_file(self):
        proc = subprocess.run(
            [str(PYTHON), str(ENGINE), str(ROOT / "does-not-exist.cpp")],
            cwd=ROOT,
            capture_output=True,
            text=True,
            check=False,
        )
        self.assertEqual(proc.returncode, 0, proc.stderr)
        payload = json.loads(proc.stdout)
        result = payload["results"][0]
        self.assertFalse(result["ok"])
        self.assertIn("does not exist", result["error"])


if __name__ == "__main__":
    unittest.main()
