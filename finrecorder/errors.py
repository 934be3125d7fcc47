"""Domain errors raised by the ledger services."""


class LedgerError(Exception):
    """Base class for all ledger errors."""


class NotFoundError(LedgerError):
    """A trade, holding or instrument does not exist for the given key."""

    def __init__(self, entity: str, key):
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} {key} not found")
