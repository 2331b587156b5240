# Models Package
from .competition import Competition, Round, Prize
from .participant import Participant, ParticipantPost
from .round_entry import RoundEntry
from .post import Post, PostLike
from .prize_payment import PrizePayment
from .audit_log import AuditLog

__all__ = [
    "Competition",
    "Round",
    "Prize",
    "Participant",
    "ParticipantPost",
    "RoundEntry",
    "Post",
    "PostLike",
    "PrizePayment",
    "AuditLog",
]
