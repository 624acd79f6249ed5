"""
Pytest configuration and fixtures for composite-structure-sync.

Provides cross-platform event loop configuration and shared KV fixtures.
"""

import asyncio
import sys

import pytest

# Set policy *before* pytest-asyncio creates any loops
if sys.platform.startswith("win"):
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())


@pytest.fixture
def baseline_entries():
    """KV entries of a blue-green baseline with one plain satellite."""
    return {
        "composite/bs/structure/bs-controller/bluegreenRole": "controller",
        "composite/bs/structure/bs-controller/compositeRole": "baseline",
        "composite/bs/structure/bs-origin/bluegreenRole": "origin",
        "composite/bs/structure/bs-origin/controllerNamespace": "bs-controller",
        "composite/bs/structure/bs-origin/compositeRole": "baseline",
        "composite/bs/structure/bs-peer/bluegreenRole": "peer",
        "composite/bs/structure/bs-peer/controllerNamespace": "bs-controller",
        "composite/bs/structure/bs-peer/compositeRole": "baseline",
        "composite/bs/structure/st-1/compositeRole": "satellite",
    }
