"""Common exception hierarchy for the taudiag diagnostics."""

from __future__ import annotations


class TauDiagError(Exception):
    """Base class for all taudiag specific exceptions."""


class TauDiagConfigError(TauDiagError, ValueError):
    """Raised when configuration validation fails."""


class BandConfigError(TauDiagConfigError):
    """Raised when a frequency band table cannot be constructed."""


class TauDiagResourceError(TauDiagError, MemoryError):
    """Raised when a diagnostic result buffer cannot be allocated."""


class PhotonCreationError(TauDiagError, RuntimeError):
    """Raised when a photon cannot be launched from the emission origin."""


class IntegrationError(TauDiagError, RuntimeError):
    """Raised when a path integration terminates without a meaningful result."""

    def __init__(self, message: str, status: object | None = None) -> None:
        super().__init__(message)
        self.status = status


__all__ = [
    "TauDiagError",
    "TauDiagConfigError",
    "BandConfigError",
    "TauDiagResourceError",
    "PhotonCreationError",
    "IntegrationError",
]
