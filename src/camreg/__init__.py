"""camreg - registration of mobile cameras against a fixed depth camera."""

__version__ = "0.1.0"

# Re-export main classes for convenient imports
from .camera import CameraIntrinsics
from .config import EstimatorParameters, load_reference_to_world
from .errors import ConfigError, InputError
from .pose import SE3, angle_from_z_axis, camera_pose_from_pnp
from .features import (
    DescriptorMatcher,
    FeatureDetector,
    Features,
    MatchConsistencyResolver,
    Matches,
)
from .depth import DepthRepairer, PointReconstructor, ReconstructedPoints
from .memory import FeatureMemoryProtocol, FeaturesMemory, MemoryFeature
from .registration import (
    EstimatorState,
    PnPResult,
    PoseEstimate,
    PoseEstimator,
    PoseSolver,
    RegistrationResult,
    RegistrationStatus,
    ValidationGate,
)

__all__ = [
    "__version__",
    # Geometry
    "SE3",
    "CameraIntrinsics",
    "camera_pose_from_pnp",
    "angle_from_z_axis",
    # Configuration
    "EstimatorParameters",
    "load_reference_to_world",
    # Errors
    "InputError",
    "ConfigError",
    # Features
    "FeatureDetector",
    "Features",
    "DescriptorMatcher",
    "Matches",
    "MatchConsistencyResolver",
    # Depth
    "DepthRepairer",
    "PointReconstructor",
    "ReconstructedPoints",
    # Feature memory
    "FeaturesMemory",
    "FeatureMemoryProtocol",
    "MemoryFeature",
    # Registration
    "PoseEstimator",
    "EstimatorState",
    "PoseEstimate",
    "RegistrationResult",
    "RegistrationStatus",
    "PoseSolver",
    "PnPResult",
    "ValidationGate",
]
