"""
Pytest configuration for FunnelForge tests.

Test Tier System:
- fast (default): Pure unit tests, all I/O mocked
- medium: API TestClient tests
- slow: Real generation calls against the OpenAI API

Run tiers:
- pytest                          # Fast + medium (default, see pyproject addopts)
- pytest -m medium                # Medium only
- pytest -m slow                  # Slow only
- pytest --override-ini="addopts=" -v   # Full suite (all tiers)

Note: Unmarked tests are auto-assigned to 'fast' tier. To add a new test:
- No marker needed for fast (unit) tests
- Add @pytest.mark.medium for API TestClient tests
- Add @pytest.mark.slow for external API tests

API Key Safety:
- Fast/medium tests force-set a fake OPENAI_API_KEY to prevent accidental API calls
- Only slow tests (and full suite) preserve real API keys from environment
"""

import os
import sys
from pathlib import Path

import pytest

# Add project root to path for imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from funnelforge.db.models import FunnelColors, FunnelFonts, FunnelStyle, ProductInfo

from tests.fakes import FakeFunnelStore, FakeSynthesizer


# =============================================================================
# Tier Auto-Assignment
# =============================================================================

def pytest_collection_modifyitems(config, items):
    """
    Automatically assign tier markers to unmarked tests.

    Tests are fast by default unless explicitly marked as medium or slow.
    Tests marked @pytest.mark.integration (but no tier) are assigned to
    'medium'.
    """
    for item in items:
        has_tier = (
            list(item.iter_markers(name='fast')) or
            list(item.iter_markers(name='medium')) or
            list(item.iter_markers(name='slow'))
        )
        if has_tier:
            continue

        if list(item.iter_markers(name='skip')):
            continue

        if list(item.iter_markers(name='integration')):
            item.add_marker(pytest.mark.medium)
            continue

        item.add_marker(pytest.mark.fast)


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Force a fake API key unless slow tests are selected."""
    markexpr = getattr(config.option, 'markexpr', '') or ''

    includes_slow_tests = (
        not markexpr or
        (
            'slow' in markexpr and
            'not slow' not in markexpr
        )
    )

    if includes_slow_tests:
        os.environ.setdefault("OPENAI_API_KEY", "sk-test-fake-key-for-testing")
    else:
        os.environ["OPENAI_API_KEY"] = "sk-test-fake-key-for-testing"


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture(scope="session")
def project_root():
    """Return project root path (session-scoped for efficiency)."""
    return PROJECT_ROOT


@pytest.fixture
def store():
    return FakeFunnelStore()


@pytest.fixture
def synthesizer():
    return FakeSynthesizer()


@pytest.fixture
def brand_style():
    return FunnelStyle(
        colors=FunnelColors(
            primary="#ff6600",
            secondary="#003366",
            accent="#ffcc00",
            background="#fff8f0",
            dark="#111111",
        ),
        fonts=FunnelFonts(heading="Playfair Display", body="Inter"),
        style_notes="Bold and warm",
    )


@pytest.fixture
def acme_product():
    return ProductInfo(
        product_name="Acme Widget",
        description="The last widget you will ever need",
        price="$49",
        image_urls=["http://img.example.com/a.png", "http://img.example.com/b.png"],
    )
