"""Error types raised by ingestion and reporting."""


class LedgerReconError(Exception):
    """Base class for all ledger ingestion/reporting errors."""


class ValidationError(LedgerReconError, ValueError):
    """A caller supplied a missing or invalid parameter."""


class ConfigMissing(LedgerReconError):
    """A required chart-of-accounts section is absent."""


class ExternalServiceError(LedgerReconError):
    """The ledger API or the FX provider failed or returned garbage."""


class PersistenceError(LedgerReconError):
    """The transaction store rejected an operation outside a bulk write."""


class ParseError(LedgerReconError):
    """An input file could not be read or has an invalid shape."""
