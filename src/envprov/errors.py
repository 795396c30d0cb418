"""
Exception hierarchy for envprov.

Every error is fatal to the build that raised it. Nothing here is retried.
"""
from typing import Optional


class EnvprovError(Exception):
    """Base class for all envprov errors."""


class ConfigError(EnvprovError):
    """Invalid settings value."""


class RecipeError(EnvprovError):
    """A recipe could not be loaded or contains an unsupported instruction."""


class ImageResolutionError(EnvprovError):
    """The base image reference could not be resolved to a filesystem snapshot."""

    def __init__(self, reference: str, reason: str = ""):
        self.reference = reference
        self.reason = reason
        message = f"Cannot resolve base image {reference}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class StepFailedError(EnvprovError):
    """
    A provisioning step exited with a non-zero status.

    The failing tool's own output has already been written to the terminal;
    this error only carries the step label and exit code.
    """

    def __init__(self, step: str, exit_code: Optional[int], index: int = 0):
        self.step = step
        self.exit_code = exit_code
        self.index = index
        super().__init__(f"Step {index} ({step}) failed with exit code {exit_code}")


class ComponentInstallError(StepFailedError):
    """The toolchain component manager failed."""


class SystemPackageError(StepFailedError):
    """Package index refresh or system package install failed."""


class LibraryInstallError(StepFailedError):
    """The language package installer failed."""
