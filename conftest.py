import pytest

from test_qrscan import TestResult


@pytest.fixture
def r(request):
    """Per-test result record, as the standalone runner passes it."""
    return TestResult(request.node.name)
