"""Exceptions raised by the conversation gate."""


class GateConfigurationError(ValueError):
    """Raised when the gate cannot be built from the supplied configuration."""


class BatchEntryDecodeError(ValueError):
    """Raised when a batch list holds an entry that cannot be decoded."""

    def __init__(self, list_key: str, raw: str | bytes):
        self.list_key = list_key
        self.raw = raw
        preview = raw[:80] if raw else raw
        super().__init__(f"Malformed batch entry in {list_key}: {preview!r}")
