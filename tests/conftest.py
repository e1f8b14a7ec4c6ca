"""
Pytest configuration and fixtures.

Integration tests run complete migrations against in-memory providers. A
clean run must not log anything at WARNING or above, so any such record
emitted while an integration test runs fails that test. Unit tests
deliberately provoke warnings and errors and are not checked.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from typing_extensions import override

import pytest

if TYPE_CHECKING:
    from collections.abc import Generator

# Warning records captured per test node id
_captured_warnings: dict[str, list[logging.LogRecord]] = {}


class WarningCollector(logging.Handler):
    """Collects WARNING and above records logged during one test."""

    test_nodeid: str

    def __init__(self, test_nodeid: str) -> None:
        super().__init__(level=logging.WARNING)
        self.test_nodeid = test_nodeid

    @override
    def emit(self, record: logging.LogRecord) -> None:
        _captured_warnings.setdefault(self.test_nodeid, []).append(record)


@pytest.fixture(autouse=True)
def fail_on_log_warnings_for_integration_tests(request: pytest.FixtureRequest) -> Generator[None]:
    """Attach a WarningCollector to the root logger for integration tests."""
    if request.node.get_closest_marker("integration") is None:
        yield
        return

    collector = WarningCollector(request.node.nodeid)
    _captured_warnings[collector.test_nodeid] = []
    root_logger = logging.getLogger()
    root_logger.addHandler(collector)
    try:
        yield
    finally:
        root_logger.removeHandler(collector)


@pytest.hookimpl(tryfirst=True, hookwrapper=True)
def pytest_runtest_makereport(item: pytest.Item, call: pytest.CallInfo[None]) -> Generator[None]:  # type: ignore[misc]
    """Turn a passed integration test into a failure if it logged warnings."""
    outcome = yield
    report = outcome.get_result()

    if call.when != "call":
        return

    records = _captured_warnings.pop(item.nodeid, [])
    if records and report.outcome == "passed":
        lines = [f"  - {r.levelname}: {r.getMessage()} (in {r.name}:{r.lineno})" for r in records]
        report.outcome = "failed"
        report.longrepr = f"Integration test logged {len(records)} warning(s):\n" + "\n".join(lines)
