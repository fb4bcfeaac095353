"""
Review policy: decides when an extracted receipt needs a human.
"""

from .scorer import ReviewDecision, ReviewPolicy, ReviewThresholds

__all__ = ["ReviewDecision", "ReviewPolicy", "ReviewThresholds"]
