"""Feature detection, descriptor matching and correspondence resolution.

Components:
- FeatureDetector: ORB features of the reference camera image
- DescriptorMatcher: nearest-neighbour Hamming matching, device to reference
- MatchConsistencyResolver: duplicate merging and ambiguity removal
"""

from .descriptor_matcher import DescriptorMatcher, Matches
from .feature_detector import FeatureDetector, Features, to_grayscale
from .match_resolver import MatchConsistencyResolver

__all__ = [
    # Features
    "FeatureDetector",
    "Features",
    "to_grayscale",
    # Matching
    "DescriptorMatcher",
    "Matches",
    # Resolution
    "MatchConsistencyResolver",
]
