"""
Shared fixtures for the toolkit tests.
"""
import logging

import pytest

from m365_admin_toolkit.models import RunContext
from m365_admin_toolkit.run_log import ROOT_LOGGER


class SleepRecorder:
    """Stands in for asyncio.sleep and records every requested wait."""

    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


@pytest.fixture
def sleeper():
    return SleepRecorder()


@pytest.fixture
def run_context():
    return RunContext(operation="test")


@pytest.fixture
def make_user_item():
    """Factory for Graph user payloads."""

    def _make(user_id, upn=None, enabled=True, licensed=True,
              given_name="Ada", surname="Lovelace"):
        return {
            "id": user_id,
            "userPrincipalName": upn or f"{user_id}@contoso.com",
            "displayName": f"User {user_id}",
            "mail": upn or f"{user_id}@contoso.com",
            "accountEnabled": enabled,
            "assignedLicenses": [{"skuId": "sku-1"}] if licensed else [],
            "givenName": given_name,
            "surname": surname,
            "proxyAddresses": [f"SMTP:{user_id}@contoso.com", f"smtp:{user_id}@contoso.onmicrosoft.com"],
        }

    return _make


@pytest.fixture(autouse=True)
def reset_toolkit_logger():
    """setup_logging() detaches the toolkit logger; put it back after each test."""
    yield
    logger = logging.getLogger(ROOT_LOGGER)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
