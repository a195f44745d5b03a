"""Error taxonomy for Pastoralist."""

from pathlib import Path


class PastoralistError(Exception):
    """Base class for all Pastoralist errors."""


class ConfigError(PastoralistError):
    """Unreadable or invalid manifest, config file or workspace pattern."""


class ProviderError(PastoralistError):
    """A security provider failed to produce results."""

    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.message = message


class ProviderUnavailable(ProviderError):
    """Missing binary, missing credential, or non-zero exit."""


class ReconciliationError(PastoralistError):
    """A manifest declares conflicting override mechanisms for one package."""

    def __init__(self, manifest: Path, message: str):
        super().__init__(f"{manifest}: {message}")
        self.manifest = manifest


class WriteError(PastoralistError):
    """Writing a manifest failed; nothing was written."""
