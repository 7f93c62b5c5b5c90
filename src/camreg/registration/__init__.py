"""Device pose registration against the fixed reference camera.

Components:
- PoseEstimator: per-device orchestration of a registration cycle
- EstimatorState: last accepted estimate, seeds the next solve
- PoseSolver: PnP + RANSAC returning the device pose in the reference frame
- ValidationGate: sequential accept/reject checks
"""

from .estimator import EstimatorState, PoseEstimator
from .pose_solver import PnPResult, PoseSolver, compute_reprojection_error
from .results import PoseEstimate, RegistrationResult, RegistrationStatus, RegistrationTiming
from .validation import GateDecision, ValidationGate

__all__ = [
    # Orchestration
    "PoseEstimator",
    "EstimatorState",
    # Results
    "PoseEstimate",
    "RegistrationResult",
    "RegistrationStatus",
    "RegistrationTiming",
    # Pose solving
    "PoseSolver",
    "PnPResult",
    "compute_reprojection_error",
    # Validation
    "ValidationGate",
    "GateDecision",
]
