class LedgerError(Exception):
    """Base class for every failure raised by the ledger core."""


class FormatError(LedgerError):
    """An imported or persisted file does not have the expected structure."""


class OracleError(LedgerError):
    """The identity-match oracle failed or returned nothing usable."""


class PersistenceError(LedgerError):
    """Reading from or writing to the storage target failed."""


class NotFoundError(PersistenceError):
    """The named file does not exist in the storage target."""
