"""Errors raised by the AR placement runtime."""


class ARError(Exception):
    """Base class for AR session errors."""

    #: Message shown to the viewer when this error ends a session
    user_message = "Something went wrong while starting AR."


class ConfigurationError(ARError):
    """Raised when a placement target lacks its marker artifact or asset."""

    user_message = "This item is missing AR data. Please update it in the dashboard."


class AcquisitionError(ARError):
    """Raised when the camera or tracking context cannot be started."""

    user_message = "Could not start AR camera. Check permissions."


class AssetLoadFailure(ARError):
    """Raised when an asset cannot be fetched or parsed."""

    user_message = "The 3D model could not be loaded."


class TeardownFailure(ARError):
    """Wraps an error raised while releasing session resources."""

    user_message = "AR resources were not released cleanly."
