"""Typed errors raised by the splitter core."""


class SplitterError(Exception):
    """Base class for every error the engine surfaces to its caller."""


class InputError(SplitterError):
    """Unsupported media type."""


class DecodeError(SplitterError):
    """Media bytes could not be decoded."""


class StateError(SplitterError):
    """Operation attempted in the wrong state (no audio loaded, busy session)."""


class ValidationError(SplitterError):
    """Arguments rejected before any work started."""


class EncodeError(SplitterError):
    """MP3 encoding failed."""


class EncoderUnavailableError(EncodeError):
    """No MP3 encoder (ffmpeg) could be found."""


class ArchiveError(SplitterError):
    """Writing the archive or saving output failed."""


class ExportCancelled(SplitterError):
    """Batch export stopped because cancellation was requested."""


class BatchExportError(SplitterError):
    """One segment of a batch export failed; the rest of the batch was aborted."""

    def __init__(self, segment, step: str, cause: Exception):
        self.segment = segment
        self.step = step
        self.cause = cause
        name = getattr(segment, "name", segment)
        super().__init__(f"Export failed at segment '{name}' during {step}: {cause}")


class EmptyNameWarning(UserWarning):
    """A rename target was blank and the default name was restored."""
