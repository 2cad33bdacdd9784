"""Typed exceptions raised by the linker."""


class LinkerError(Exception):
    """Base class for linker errors."""


class InputContractError(LinkerError, ValueError):
    """Raised when the question JSON does not have the expected shape."""


class ImageResolutionError(LinkerError, LookupError):
    """Raised when a named image object cannot be resolved or decoded."""
