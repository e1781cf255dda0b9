"""
Rate limiting package.

Public API::

    from legalease.ratelimit import RateGate, OperationClass

    gate = RateGate.from_settings(settings)
    admission = await gate.admit(OperationClass.UPLOAD, client_ip)
    if not admission.allowed:
        ...  # admission.retry_after_seconds
"""

from legalease.ratelimit.gate import (
    Admission,
    Allowed,
    Denied,
    OperationClass,
    RateGate,
    RateLimitPolicy,
    RateLimitStatus,
    build_storage,
)

__all__ = [
    "Admission",
    "Allowed",
    "Denied",
    "OperationClass",
    "RateGate",
    "RateLimitPolicy",
    "RateLimitStatus",
    "build_storage",
]
