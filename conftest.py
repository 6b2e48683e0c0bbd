"""
Pytest configuration and fixtures for directory crawler tests.
"""

import os
import shutil
import tempfile

# Business loggers open their files at import time
_LOG_DIR = tempfile.mkdtemp(prefix="directory_crawler_logs_")
os.environ.setdefault("DIRECTORY_CRAWLER_LOG_DIR", _LOG_DIR)

import pytest
from hypothesis import settings, Verbosity

# Configure Hypothesis for faster test runs
settings.register_profile("fast", max_examples=20, deadline=5000, verbosity=Verbosity.quiet)
settings.register_profile("thorough", max_examples=200, deadline=30000, verbosity=Verbosity.normal)

settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "fast"))


def pytest_configure(config):
    """Configure pytest with custom settings."""
    import logging
    logging.getLogger("directory_crawler").setLevel(logging.WARNING)
    logging.getLogger("hypothesis").setLevel(logging.WARNING)


def pytest_collection_modifyitems(config, items):
    """Mark property-based and integration tests."""
    for item in items:
        if item.fspath.basename.endswith("_properties.py"):
            item.add_marker(pytest.mark.property)

        if "integration" in item.name.lower() or "integration" in item.fspath.basename:
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)


def pytest_unconfigure(config):
    shutil.rmtree(_LOG_DIR, ignore_errors=True)
