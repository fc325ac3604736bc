"""Tests for TestMonitor and test-output parsing."""

import pytest

from workflow_watcher.core.task import AnomalyType, Priority
from workflow_watcher.monitors.test_monitor import TestMonitor, analyze_test_output, parse_coverage

VITEST_FAILING = """
 RUN  v1.6.0 /repo

 ✓ src/utils/format.test.ts (4 tests) 12ms
 ❯ src/api/client.test.ts (3 tests | 1 failed) 30ms
   ✓ builds the request url
   × retries on 503 (12ms)
   ✓ parses json
 FAIL src/api/client.test.ts > retries on 503

 Test Files  1 failed | 1 passed (2)
      Tests  1 failed | 6 passed (7)
"""

VITEST_PASSING = """
 ✓ src/utils/format.test.ts (4 tests) 12ms
 Test Files  1 passed (1)
      Tests  4 passed (4)
"""

PYTEST_FAILING = """
============================= test session starts ==============================
collected 5 items

tests/test_auth.py ..F.E                                                 [100%]

=========================== short test summary info ============================
FAILED tests/test_auth.py::test_login_rejects_bad_password - AssertionError: 200 != 401
ERROR tests/test_auth.py::test_session_cookie - fixture 'browser' not found
===================== 1 failed, 3 passed, 1 error in 0.42s =====================
"""

PYTEST_VERBOSE = """
tests/test_math.py::test_add PASSED                                      [ 50%]
tests/test_math.py::test_div FAILED                                      [100%]
FAILED tests/test_math.py::test_div - ZeroDivisionError
========================= 1 failed, 1 passed in 0.05s ==========================
"""

PYTEST_PASSING = "======================== 12 passed in 1.20s ========================"

BUILD_NOISE = """
 ✓ Generated Prisma Client (v5.1.0) to ./node_modules/@prisma/client
 ✓ Build success in 140ms
 Tests  3 passed (3)
"""


@pytest.fixture
def monitor(queue):
    return TestMonitor(queue)


class TestAnalyzeOutput:
    def test_vitest_failures(self):
        result = analyze_test_output(VITEST_FAILING)

        assert result.has_failures
        assert [t.name for t in result.failed_tests] == ["retries on 503"]
        assert result.test_file == "src/api/client.test.ts"
        assert "parses json" in [t.name for t in result.passed_tests]

    def test_vitest_all_green(self):
        result = analyze_test_output(VITEST_PASSING)

        assert not result.has_failures
        assert result.failed_tests == []

    def test_pytest_short_summary(self):
        result = analyze_test_output(PYTEST_FAILING)

        assert result.has_failures
        assert [t.name for t in result.failed_tests] == [
            "test_login_rejects_bad_password",
            "test_session_cookie",
        ]
        assert result.failed_tests[0].file == "tests/test_auth.py"

    def test_pytest_verbose_records_passes(self):
        result = analyze_test_output(PYTEST_VERBOSE)

        assert [t.name for t in result.failed_tests] == ["test_div"]
        assert [t.name for t in result.passed_tests] == ["test_add"]
        assert result.total_tests == 2

    def test_pytest_all_green(self):
        assert not analyze_test_output(PYTEST_PASSING).has_failures

    def test_build_tool_check_marks_ignored(self):
        result = analyze_test_output(BUILD_NOISE)

        assert not result.has_failures
        assert result.passed_tests == []

    def test_empty_output(self):
        result = analyze_test_output("")
        assert not result.has_failures
        assert result.total_tests == 0


class TestCoverage:
    def test_parse_pytest_cov_total(self):
        output = "Name    Stmts   Miss  Cover\nsrc/a.py   10   2    80%\nTOTAL      120  18    85%\n"
        assert parse_coverage(output) == 85.0

    def test_parse_istanbul_summary(self):
        output = "All files |   72.5 |    60 |   70 |   72.5 |\n"
        assert parse_coverage(output) == 72.5

    def test_no_coverage(self):
        assert parse_coverage(PYTEST_PASSING) is None

    def test_drop_below_baseline_reported(self, monitor, queue):
        monitor.set_baseline_coverage(85.0)

        check = monitor.check_coverage(80.0)
        assert check.has_drop
        assert check.drop == 5.0

        task = monitor.report_coverage_drop(check.current, check.baseline)
        assert task.anomaly_type == AnomalyType.COVERAGE_DROP
        assert task.priority == "medium"
        assert task.suggested_agent == "test-engineer"
        assert task.context.drop == 5.0

    def test_observe_sets_then_compares_baseline(self, monitor, queue):
        assert monitor.observe("TOTAL 100 10 90%\n12 passed") == []
        assert monitor.baseline_coverage == 90.0

        tasks = monitor.observe("TOTAL 100 20 80%\n12 passed")

        assert [t.anomaly_type for t in tasks] == [AnomalyType.COVERAGE_DROP]


class TestReporting:
    def test_one_task_per_failing_test(self, monitor, queue):
        result = analyze_test_output(PYTEST_FAILING)

        tasks = monitor.report_failures(result)

        assert len(tasks) == 2
        assert {t.context.test_name for t in tasks} == {
            "test_login_rejects_bad_password",
            "test_session_cookie",
        }
        assert all(t.priority == "high" for t in tasks)
        assert all(t.source == "test-monitor" for t in tasks)

    def test_duplicate_names_in_one_run_collapse(self, monitor, queue):
        output = (
            "FAILED tests/a.py::test_x - boom\n"
            "tests/a.py::test_x FAILED\n"
            "1 failed in 0.1s\n"
        )

        tasks = monitor.report_failures(analyze_test_output(output), Priority.CRITICAL)

        assert len(tasks) == 1
        assert tasks[0].priority == "critical"

    def test_green_run_reports_nothing(self, monitor, queue):
        assert monitor.report_failures(analyze_test_output(PYTEST_PASSING)) == []
        assert queue.pending_count() == 0


class TestFlakiness:
    def test_needs_three_runs_with_mixed_results(self, monitor):
        monitor.record_test_run("a.py", "test_x", True)
        monitor.record_test_run("a.py", "test_x", False)
        assert not monitor.is_test_flaky("a.py", "test_x")

        monitor.record_test_run("a.py", "test_x", True)
        assert monitor.is_test_flaky("a.py", "test_x")

    def test_consistent_results_not_flaky(self, monitor):
        for _ in range(5):
            monitor.record_test_run("a.py", "test_y", False)
        assert not monitor.is_test_flaky("a.py", "test_y")

    def test_history_is_capped(self, queue):
        monitor = TestMonitor(queue, max_history_per_test=4)
        for i in range(10):
            monitor.record_test_run("a.py", "test_z", i % 2 == 0)

        assert len(monitor.get_test_history("a.py", "test_z")) == 4

    def test_flaky_reported_once(self, monitor, queue):
        for passed in (True, False, True):
            monitor.record_test_run("a.py", "test_x", passed)

        first = monitor.report_flaky_tests()
        second = monitor.report_flaky_tests()

        assert len(first) == 1
        assert first[0].anomaly_type == AnomalyType.TEST_FLAKY
        assert first[0].context.pass_count == 2
        assert second == []

    def test_observe_tracks_flakiness_across_runs(self, monitor):
        passing = "tests/t.py::test_a PASSED\n1 passed in 0.1s\n"
        failing = "tests/t.py::test_a FAILED\nFAILED tests/t.py::test_a - boom\n1 failed in 0.1s\n"

        monitor.observe(passing)
        monitor.observe(failing)
        tasks = monitor.observe(passing)

        assert [t.anomaly_type for t in tasks] == [AnomalyType.TEST_FLAKY]
