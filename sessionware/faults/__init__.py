"""
Sessionware Faults - Structured fault types.

Exceptions raised by sessionware are typed fault signals carrying a stable
code, a domain, a severity and retry semantics.

Core exports:
- Fault: Base fault class
- FaultDomain: Domain taxonomy
- Severity: Severity levels
"""

from .core import (
    Fault,
    FaultDomain,
    Severity,
    DOMAIN_DEFAULTS,
)

__all__ = [
    "Fault",
    "FaultDomain",
    "Severity",
    "DOMAIN_DEFAULTS",
]
