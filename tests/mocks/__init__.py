"""
Test doubles for goalstake
==========================
In-memory fakes for external collaborators, so the suite runs offline.

Usage:
    from tests.mocks import FakePaymentGateway
"""

from .fake_gateway import FakePaymentGateway

__all__ = ["FakePaymentGateway"]
