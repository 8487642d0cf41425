class ExplorerError(Exception):
    pass


class CaptureUnavailable(ExplorerError):
    """No frame could be captured this tick. The tick is skipped."""


class PersistenceIOError(ExplorerError):
    def __init__(self, path, cause):
        super().__init__(f"Failed to persist {path}: {cause}")
        self.path = path
        self.cause = cause


class InputDeliveryFailure(ExplorerError):
    def __init__(self, key, cause):
        super().__init__(f"Failed to deliver key {key!r}: {cause}")
        self.key = key
        self.cause = cause
