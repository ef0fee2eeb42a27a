"""Custom exception hierarchy for pyfieldinstall."""

from __future__ import annotations


class FieldInstallError(Exception):
    """Base exception for all pyfieldinstall errors."""


class FieldInstallConfigError(FieldInstallError):
    """Invalid or missing configuration."""


class NotFoundError(FieldInstallError):
    """A referenced document does not exist.

    Only raised by point reads (``get_by_id``).  Join-time misses are
    never raised; the enrichment engine degrades them to ``None``.
    """

    def __init__(self, message: str, *, collection: str = "", doc_id: str = "") -> None:
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(message)


class ConcurrentModification(FieldInstallError):
    """A conditional write found the document in a different state.

    Raised by :meth:`DocumentStore.update_if` when one of the expected
    field values no longer matches what is stored.
    """

    def __init__(
        self,
        message: str,
        *,
        collection: str = "",
        doc_id: str = "",
        actual: dict[str, object] | None = None,
    ) -> None:
        self.collection = collection
        self.doc_id = doc_id
        self.actual = actual or {}
        super().__init__(message)


class InvalidTransitionError(FieldInstallError):
    """An installation state transition was rejected.

    ``current`` is the status found in the store, ``expected`` the status
    the caller assumed when it decided to act (``None`` when the caller
    read the current state itself).
    """

    def __init__(
        self,
        message: str,
        *,
        installation_id: str = "",
        action: str = "",
        current: str | None = None,
        expected: str | None = None,
    ) -> None:
        self.installation_id = installation_id
        self.action = action
        self.current = current
        self.expected = expected
        super().__init__(message)


class InstallationInFlightError(FieldInstallError):
    """The installer still has an actionable installation outstanding."""

    def __init__(self, message: str, *, installer_id: str = "", installation_id: str = "") -> None:
        self.installer_id = installer_id
        self.installation_id = installation_id
        super().__init__(message)


class ImportRowError(FieldInstallError):
    """A bulk-import row is malformed or cannot be resolved.

    These are accumulated per row and never abort a batch.
    """

    def __init__(self, message: str, *, row: int = 0, key: str = "") -> None:
        self.row = row
        self.key = key
        super().__init__(message)


class SubscriptionError(FieldInstallError):
    """A collection change feed failed.

    Isolated to the affected collection; the composer keeps the last
    good snapshot and the other feeds continue.
    """

    def __init__(self, message: str, *, collection: str = "") -> None:
        self.collection = collection
        super().__init__(message)


class PermissionDeniedError(FieldInstallError):
    """The acting user is not allowed to perform the operation."""


class TelemetryTransportError(FieldInstallError):
    """HTTP-level failure talking to the telemetry service."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)
