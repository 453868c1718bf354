class BillingSyncError(Exception):
    """Base class for every failure raised by the ingestion and analytics layers."""


class CredentialError(BillingSyncError):
    """The provider rejected the API key (invalid, revoked or missing permissions)."""


class TransportError(BillingSyncError):
    """Network failure, rate-limit rejection or any other provider API error."""


class PersistenceError(BillingSyncError):
    """A storage write was rejected."""


class NotConnectedError(BillingSyncError):
    pass


class SyncCooldownError(BillingSyncError):
    pass


class SyncInProgressError(BillingSyncError):
    pass
