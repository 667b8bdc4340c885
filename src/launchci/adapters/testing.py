# adapters/testing.py
from __future__ import annotations

from ..model import JobType
from .scanning import ServiceTargetAdapter


class TestAdapter(ServiceTargetAdapter):
    """Test jobs: same selection rules as scanning, different spec fields."""
    __test__ = False  # not a pytest class

    kind = JobType.TEST
    type_field = "test_type"
    service_mode = "service_test"
    plain_field = "test_modules"
    plain_options = ""
    service_options = "service_test_options"
    service_picks = "service_and_tests"
    empty_plain_message = "select at least one test"
