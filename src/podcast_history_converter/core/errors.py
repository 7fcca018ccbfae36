class ConversionError(Exception):
    """Fatal error that aborts a run before anything is written."""


class StoreError(ConversionError):
    """Store file is unreadable or does not have the expected schema."""


class OpmlError(ConversionError):
    """OPML input is missing, unparsable or lists no feeds."""
