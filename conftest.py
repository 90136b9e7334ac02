"""
Pytest configuration for requestbox tests.

Provides:
- @pytest.mark.network marker for tests that call the real YouTube API
- Auto-skip of network tests when no API key is available
"""

import os

import pytest

YOUTUBE_API_KEY = os.environ.get("REQUESTBOX_YOUTUBE_API_KEY")


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "network: marks tests as calling the real YouTube API (skipped without a key)"
    )


def pytest_collection_modifyitems(config, items):
    """Auto-skip network tests when no YouTube API key is configured."""
    if YOUTUBE_API_KEY:
        return

    skip_network = pytest.mark.skip(reason="REQUESTBOX_YOUTUBE_API_KEY not set")
    for item in items:
        if "network" in item.keywords:
            item.add_marker(skip_network)
