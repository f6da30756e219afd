"""Exception classes shared across ``zoom_ics``.

Every error raised by the library is fatal for the run that triggered it: the geometry,
grid and spectral operations are deterministic, so a failure always points at a
configuration or logic defect rather than a transient condition.
"""
import warnings

from tqdm.auto import tqdm


class ZoomICsError(Exception):
    """Base class for all ``zoom_ics`` errors."""

    pass


class ConfigurationError(ZoomICsError):
    """Raised for missing, malformed or mutually incompatible run parameters."""

    def __init__(self, message: str, *parameters: str):
        self.parameters = parameters
        if parameters:
            message = f"{message} (parameters: {', '.join(parameters)})"
        super().__init__(message)


class GeometryError(ZoomICsError):
    """Raised when a grid level's geometry is degenerate or inconsistent."""

    pass


class LevelNotFoundError(GeometryError):
    """Raised when a specified level does not exist."""

    pass


class IncompatibleHierarchyError(ZoomICsError):
    """Raised when element-wise operations are attempted on mismatched grids."""

    pass


class SpectralPreconditionError(ZoomICsError):
    """Raised when the spectral coupler receives arrays it cannot transform consistently."""

    pass


class tqdmWarningRedirector:
    """Context manager routing ``warnings`` output through ``tqdm.write`` while progress bars are active."""

    def __enter__(self):
        self._showwarning = warnings.showwarning
        warnings.showwarning = self._write_warning
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        warnings.showwarning = self._showwarning

    @staticmethod
    def _write_warning(message, category, filename, lineno, file=None, line=None):
        tqdm.write(f"{category.__name__}: {message} ({filename}:{lineno})")
