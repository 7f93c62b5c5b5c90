"""Exception types raised by camreg."""


class InputError(ValueError):
    """Malformed or empty image, depth map, camera or feature data.

    Raised by input validators. ``PoseEstimator`` converts it into an
    ``INVALID_INPUT`` result at the update boundary.
    """


class ConfigError(ValueError):
    """Invalid or incomplete estimator configuration."""
