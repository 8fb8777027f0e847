"""
Fault types shared by every sessionware module.

A fault is an exception that also carries data: a stable code, the domain
it came from, a severity and whether retrying could help.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional


class Severity(str, Enum):
    """How loudly a fault should be reported."""
    INFO = "info"
    WARN = "warn"
    ERROR = "error"
    FATAL = "fatal"   # misconfiguration; the app should not start


class FaultDomain:
    """
    Functional area a fault belongs to.

    The standard domains are attributes of the class (``FaultDomain.IO``);
    applications may create their own. Domains compare equal by name, also
    against plain strings.
    """

    def __init__(self, name: str, description: str = ""):
        self.name = name
        self.value = name
        self.description = description

    def __str__(self) -> str:
        return self.name

    def __repr__(self) -> str:
        return f"FaultDomain({self.name!r})"

    def __eq__(self, other: Any) -> bool:
        if isinstance(other, FaultDomain):
            return self.name == other.name
        return self.name == str(other)

    def __hash__(self) -> int:
        return hash(self.name)


FaultDomain.CONFIG = FaultDomain("config", "Invalid or missing configuration")
FaultDomain.FLOW = FaultDomain("flow", "Request handling")
FaultDomain.IO = FaultDomain("io", "Stores, sockets and request bodies")
FaultDomain.SECURITY = FaultDomain("security", "Signatures and header safety")
FaultDomain.SESSION = FaultDomain("session", "Session lifecycle")
FaultDomain.SYSTEM = FaultDomain("system", "Runtime failures")


# (severity, retryable) used when neither the call nor the class sets them
DOMAIN_DEFAULTS = {
    FaultDomain.CONFIG: (Severity.FATAL, False),
    FaultDomain.FLOW: (Severity.ERROR, False),
    FaultDomain.IO: (Severity.WARN, True),
    FaultDomain.SECURITY: (Severity.ERROR, False),
    FaultDomain.SESSION: (Severity.ERROR, False),
    FaultDomain.SYSTEM: (Severity.FATAL, False),
}
_FALLBACK = (Severity.ERROR, False)


class Fault(Exception):
    """
    Base class for sessionware errors.

    ``code``, ``message`` and ``domain`` are required, either as arguments or
    as class attributes on a subclass::

        class StoreDown(Fault):
            code = "STORE_DOWN"
            message = "Session store refused the connection"
            domain = FaultDomain.IO

    ``public`` marks the message as safe to show to clients.
    """

    def __init__(
        self,
        code: str | None = None,
        message: str | None = None,
        *,
        domain: FaultDomain | None = None,
        severity: Optional[Severity] = None,
        retryable: Optional[bool] = None,
        public: Optional[bool] = None,
        metadata: Optional[dict[str, Any]] = None,
    ):
        cls = type(self)
        self.code = code if code is not None else getattr(cls, "code", None)
        self.message = message if message is not None else getattr(cls, "message", None)
        self.domain = domain if domain is not None else getattr(cls, "domain", None)

        if self.code is None or self.message is None or self.domain is None:
            raise TypeError(f"{cls.__name__} needs code, message and domain")

        super().__init__(self.message)

        default_severity, default_retryable = DOMAIN_DEFAULTS.get(self.domain, _FALLBACK)
        self.severity = severity or getattr(cls, "severity", None) or default_severity

        if retryable is None:
            retryable = getattr(cls, "retryable", None)
        self.retryable = default_retryable if retryable is None else retryable

        self.public = getattr(cls, "public", False) if public is None else public
        self.metadata = metadata or {}

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, domain={self.domain.value}, severity={self.severity.value})"

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "domain": self.domain.value,
            "severity": self.severity.value,
            "retryable": self.retryable,
            "public": self.public,
            "metadata": self.metadata,
        }
