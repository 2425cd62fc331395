"""Pytest configuration and fixtures.

Provides environment isolation, logging configuration, automatic API test
skipping and a small documentation corpus. Fixtures here are autouse unless
noted.
"""

from __future__ import annotations

from contextlib import suppress
import logging
import os
from pathlib import Path

import pytest

# =============================================================================
# Environment Isolation (Autouse)
# =============================================================================

_PROVIDER_ENV_PREFIXES = ("ANTHROPIC_", "OPENAI_", "GEMINI_", "GOOGLE_", "CASTOR_")


@pytest.fixture(autouse=True)
def block_dotenv(request, monkeypatch):
    """Prevent python-dotenv from loading project .env files during tests.

    Opt-out: @pytest.mark.allow_dotenv
    """
    if request.node.get_closest_marker("allow_dotenv"):
        return
    with suppress(Exception):
        monkeypatch.setattr(
            "dotenv.load_dotenv", lambda *_args, **_kwargs: False, raising=False
        )


@pytest.fixture(autouse=True)
def isolate_provider_env(request, monkeypatch):
    """Ensure a clean provider environment for each test.

    Clears provider API keys and CASTOR_* overrides to prevent test pollution.
    Opt-out: @pytest.mark.allow_env_pollution or @pytest.mark.api
    """
    if request.node.get_closest_marker("allow_env_pollution") or (
        "api" in request.node.keywords
    ):
        return

    for key in list(os.environ.keys()):
        if key.startswith(_PROVIDER_ENV_PREFIXES):
            monkeypatch.delenv(key, raising=False)


# =============================================================================
# Logging
# =============================================================================


@pytest.fixture(scope="session", autouse=True)
def quiet_noisy_libraries():
    """Suppress noisy third-party loggers."""
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


# =============================================================================
# Pytest Hooks
# =============================================================================

API_TESTS_REASON = "API tests require ENABLE_API_TESTS=1"


def _api_tests_enabled() -> bool:
    return bool(os.getenv("ENABLE_API_TESTS"))


def pytest_collection_modifyitems(items):
    """Automatically skip API tests when not explicitly enabled."""
    if _api_tests_enabled():
        return
    skip_api = pytest.mark.skip(reason=API_TESTS_REASON)
    for item in items:
        if "api" in item.keywords:
            item.add_marker(skip_api)


# =============================================================================
# Documentation Corpus
# =============================================================================

CUSTOMERS_DOC = """\
# Customers API

The customers endpoint manages the customer records of your organization.

## Create a customer

POST /api/customers

Creates a new customer. The request body is a JSON object with the fields
name (string, required), email (string, required) and phone (string,
optional). The response is 201 Created with the stored customer, including
its generated id. Requests must send an Authorization header with a bearer
token issued for your organization.

## List customers

GET /api/customers

Returns a paginated list of customers. Use the page and page_size query
parameters to walk the list.
"""

INVOICES_DOC = """\
# Invoices API

GET /api/invoices returns the invoices issued to a customer. Filter by
customer_id to restrict the list to one customer.
"""


@pytest.fixture
def kbase_dir(tmp_path: Path) -> Path:
    """A small on-disk knowledge base (not autouse)."""
    root = tmp_path / "kbase"
    (root / "api").mkdir(parents=True)
    (root / "api" / "customers.md").write_text(CUSTOMERS_DOC, encoding="utf-8")
    (root / "api" / "invoices.md").write_text(INVOICES_DOC, encoding="utf-8")
    (root / "notes.bin").write_bytes(b"\x00\x01customer")
    return root
