"""
Database and domain enums
"""

import enum


class RoundPhase(enum.Enum):
    """Phase of a round relative to the current time"""
    UPCOMING = "UPCOMING"
    ACTIVE = "ACTIVE"
    ENDED = "ENDED"


class PrizePosition(enum.Enum):
    """Prize position enum"""
    FIRST = "FIRST"
    SECOND = "SECOND"
    THIRD = "THIRD"
    FOURTH = "FOURTH"
    FIFTH = "FIFTH"
    PARTICIPATION = "PARTICIPATION"


class PaymentStatus(enum.Enum):
    """Prize payment status enum"""
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class ResubmissionPolicy(enum.Enum):
    """What submit_entry does when the participant already entered the round"""
    UPDATE = "update"
    REJECT = "reject"
