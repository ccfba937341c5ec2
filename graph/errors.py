"""Exception taxonomy shared by the graph model, the stores, the API and the client."""


class MindMapError(Exception):
    """Base class for every mind map error."""


class MindMapNotFoundError(MindMapError):
    """Raised when a mind map does not exist or is not owned by the caller.

    Both cases raise the same error.
    """

    def __init__(self, mind_map_id: str) -> None:
        super().__init__(f"Mind map not found: {mind_map_id}")
        self.mind_map_id = mind_map_id


class MindMapConflictError(MindMapError):
    """Raised when a compare-and-swap replace finds a newer stored version."""

    def __init__(self, mind_map_id: str) -> None:
        super().__init__(f"Mind map was modified concurrently: {mind_map_id}")
        self.mind_map_id = mind_map_id


class UnauthenticatedError(MindMapError):
    """Raised when a credential is missing, malformed, expired or revoked."""


class StorageFailure(MindMapError):
    """Raised for transient storage or transport failures.

    This is the only error the autosave scheduler retries on its own.
    """
