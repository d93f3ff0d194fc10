class InputError(Exception):
    """Analysis was triggered without a selected file."""


class ReadError(Exception):
    """The uploaded image could not be read or encoded."""


class UnsupportedImageError(ReadError):
    pass


class ImageTooLargeError(ReadError):
    pass


class ExtractionError(Exception):
    """The extraction service failed, returned nothing, or returned non-conformant output."""


class ImageLookupError(LookupError):
    """A single drug image query failed. Never leaves the resolver."""


class AnalysisInProgressError(Exception):
    pass
