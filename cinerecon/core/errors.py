"""
Exceptions raised by the reconciliation core.

Only caller bugs and bad configuration raise. Data-quality problems
degrade to inert verdicts instead.
"""


class ReconciliationError(Exception):
    """Base class for reconciliation errors."""
    pass


class SelfPairError(ReconciliationError, ValueError):
    """Raised when a record is paired with itself."""
    pass


class AliasTableError(ReconciliationError, ValueError):
    """Raised for cyclic or malformed alias tables."""
    pass


class UnknownEntityError(ReconciliationError, KeyError):
    """Raised when a store is asked for an entity it does not hold."""
    pass
