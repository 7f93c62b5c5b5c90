"""ORB features of the reference camera and of device-reported keypoints."""

from __future__ import annotations

from dataclasses import dataclass

import cv2
import numpy as np

from ..errors import InputError


@dataclass
class Features:
    """Container for image features.

    Attributes:
        keypoints: Tuple of OpenCV KeyPoint objects
        descriptors: NxD array of binary descriptors (uint8), or None if the
            features carry no descriptors
    """

    keypoints: tuple[cv2.KeyPoint, ...]
    descriptors: np.ndarray | None

    @classmethod
    def empty(cls) -> Features:
        """Create a feature set with no keypoints."""
        return cls(keypoints=(), descriptors=None)

    @classmethod
    def from_arrays(
        cls,
        points: np.ndarray,
        descriptors: np.ndarray | None,
        sizes: np.ndarray | None = None,
        angles: np.ndarray | None = None,
        responses: np.ndarray | None = None,
        octaves: np.ndarray | None = None,
        class_ids: np.ndarray | None = None,
    ) -> Features:
        """Build features from per-keypoint arrays, e.g. as reported by a device.

        Args:
            points: Nx2 array of (x, y) pixel positions
            descriptors: NxD descriptor matrix (row i describes keypoint i)
            sizes: Optional (N,) keypoint diameters, default 1
            angles: Optional (N,) orientations in degrees, default -1 (unset)
            responses: Optional (N,) detector responses, default 0
            octaves: Optional (N,) pyramid octaves, default 0
            class_ids: Optional (N,) class ids, default -1

        Raises:
            InputError: If array lengths disagree or points are not Nx2
        """
        points = np.asarray(points, dtype=np.float32)
        if points.size == 0:
            points = points.reshape(0, 2)
        if points.ndim != 2 or points.shape[1] != 2:
            raise InputError(f"Keypoint positions must be Nx2, got {points.shape}")
        n = len(points)

        def column(values, default):
            if values is None:
                return [default] * n
            values = np.asarray(values).reshape(-1)
            if len(values) != n:
                raise InputError(f"Expected {n} keypoint attributes, got {len(values)}")
            return values.tolist()

        keypoints = tuple(
            cv2.KeyPoint(
                float(x),
                float(y),
                float(size),
                float(angle),
                float(response),
                int(octave),
                int(class_id),
            )
            for (x, y), size, angle, response, octave, class_id in zip(
                points.tolist(),
                column(sizes, 1.0),
                column(angles, -1.0),
                column(responses, 0.0),
                column(octaves, 0),
                column(class_ids, -1),
            )
        )

        if descriptors is not None:
            descriptors = np.asarray(descriptors, dtype=np.uint8)
            if descriptors.ndim != 2 or len(descriptors) != n:
                raise InputError(
                    f"Descriptors must have one row per keypoint ({n}), got {descriptors.shape}"
                )
        return cls(keypoints=keypoints, descriptors=descriptors)

    @property
    def points(self) -> np.ndarray:
        """Return Nx2 array of keypoint (x, y) coordinates."""
        if len(self.keypoints) == 0:
            return np.empty((0, 2), dtype=np.float32)
        return np.array([kp.pt for kp in self.keypoints], dtype=np.float32)

    def concatenate(self, other: Features) -> Features:
        """Return a new feature set with ``other`` appended after this one.

        Keypoint indices of this set are preserved.
        """
        if len(other) == 0:
            return self
        if len(self) == 0:
            return other
        if self.descriptors is None or other.descriptors is None:
            raise InputError("Cannot concatenate features without descriptors")
        if self.descriptors.shape[1] != other.descriptors.shape[1]:
            raise InputError(
                f"Descriptor widths differ: {self.descriptors.shape[1]} "
                f"vs {other.descriptors.shape[1]}"
            )
        return Features(
            keypoints=self.keypoints + other.keypoints,
            descriptors=np.vstack([self.descriptors, other.descriptors]),
        )

    def __len__(self) -> int:
        """Return number of features."""
        return len(self.keypoints)


class FeatureDetector:
    """ORB feature detector for the fixed reference camera.

    ORB (Oriented FAST and Rotated BRIEF) produces binary descriptors that
    can be matched against the ORB features computed on the device.
    """

    def __init__(
        self,
        n_features: int,
        scale_factor: float,
        n_levels: int,
    ) -> None:
        """Initialize ORB detector.

        Args:
            n_features: Maximum number of features to retain (sorted by score)
            scale_factor: Pyramid decimation ratio (>1.0). Lower values
                extract features at more scales but are slower.
            n_levels: Number of pyramid levels for multi-scale detection
        """
        self._orb = cv2.ORB_create(
            nfeatures=n_features,
            scaleFactor=scale_factor,
            nlevels=n_levels,
        )
        self._n_features = n_features

    def detect(self, image: np.ndarray, mask: np.ndarray | None = None) -> Features:
        """Detect ORB features in an image.

        Args:
            image: Grayscale (uint8) image. 3-channel BGR images are
                converted to grayscale first.
            mask: Optional binary mask where 255 = detect, 0 = ignore.

        Returns:
            Features object. It is empty if no keypoint was found, and has
            ``descriptors=None`` if descriptors could not be computed.

        Raises:
            InputError: If the image is empty or has an unsupported shape
        """
        image = to_grayscale(image)
        keypoints, descriptors = self._orb.detectAndCompute(image, mask)

        if keypoints is None or len(keypoints) == 0:
            return Features.empty()

        return Features(keypoints=tuple(keypoints), descriptors=descriptors)

    @property
    def n_features(self) -> int:
        """Return maximum number of features to detect."""
        return self._n_features


def to_grayscale(image: np.ndarray) -> np.ndarray:
    """Return a uint8 single-channel view of ``image``.

    Raises:
        InputError: If the image is missing, empty or not 1/3-channel uint8
    """
    if image is None:
        raise InputError("Image is None")
    image = np.asarray(image)
    if image.size == 0:
        raise InputError("Image is empty")
    if image.dtype != np.uint8:
        raise InputError(f"Image must be uint8, got {image.dtype}")
    if image.ndim == 2:
        return image
    if image.ndim == 3 and image.shape[2] == 1:
        return image[:, :, 0]
    if image.ndim == 3 and image.shape[2] == 3:
        return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
    raise InputError(f"Image must have one or three channels, got shape {image.shape}")
