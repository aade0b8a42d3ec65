"""Error taxonomy shared by the pipeline and the HTTP layer."""


class CopyTraderError(Exception):
    status_code = 500


class ValidationError(CopyTraderError):
    """Malformed input rejected at the boundary."""
    status_code = 400


class NotFoundError(CopyTraderError):
    status_code = 404


class NoMatchError(CopyTraderError):
    """No open market matched a trade description. A business outcome, not a fault."""

    def __init__(self, query: str):
        super().__init__("No matching market")
        self.query = query


class UpstreamError(CopyTraderError):
    """An upstream API (exchange, activity feed) failed. Retried on the next cycle."""
    status_code = 502


class UpstreamTimeoutError(UpstreamError):
    status_code = 504


class CatalogUnavailable(UpstreamError):
    """No market snapshot has ever been loaded."""
    status_code = 503


class PersistenceError(CopyTraderError):
    """A ledger or store write failed."""
