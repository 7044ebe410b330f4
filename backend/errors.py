class ImportFetchError(Exception):
    """An import source was unreachable, answered non-2xx or sent a malformed payload."""

    def __init__(self, source_name: str, message: str):
        super().__init__(f"{source_name}: {message}")
        self.source_name = source_name
        self.message = message


class BatchCommitError(Exception):
    """A write chunk failed. Chunks committed before it stay applied."""

    def __init__(self, committed: int, message: str):
        super().__init__(f"batch commit failed after {committed} records: {message}")
        self.committed = committed
        self.message = message
