# ride_dispatch/core/matching/__init__.py
"""
Подбор водителей.
"""

from ride_dispatch.core.matching.service import DriverCandidate, MatchResult, RideRequestMatcher, rank_drivers

__all__ = ["DriverCandidate", "MatchResult", "RideRequestMatcher", "rank_drivers"]
