"""
Exception hierarchy shared by the WebStack components.

Every error carries a human-readable message, the affected domain when
there is one, and an optional remediation suggestion for the operator.
"""


class WebStackError(Exception):
    """Base exception for WebStack operations."""

    def __init__(self, message: str, domain: str | None = None, suggestion: str | None = None):
        self.message = message
        self.domain = domain
        self.suggestion = suggestion
        super().__init__(message)


class DomainValidationError(WebStackError):
    """Invalid backend, PHP version, certificate type or other user input."""

    pass


class RecordNotFoundError(WebStackError):
    """Domain or certificate record absent from its store."""

    pass


class RecordConsistencyError(WebStackError):
    """Domain and certificate records disagree (SSL enabled without a usable certificate)."""

    pass


class StoreError(WebStackError):
    """Record store file could not be read, parsed or written."""

    pass


class ExternalToolError(WebStackError):
    """An external command failed where the caller cannot continue."""

    def __init__(self, message: str, domain: str | None = None, suggestion: str | None = None, output: str = ""):
        super().__init__(message, domain=domain, suggestion=suggestion)
        self.output = output


class ExternalValidationError(WebStackError):
    """Pre-issuance check (DNS, system clock) failed before any service was touched."""

    pass
