# backend/leadqual/models/lead.py
import uuid
from enum import Enum

from sqlalchemy import Column, Integer, String, DateTime, Text, JSON, Boolean
from sqlalchemy.sql import func

from leadqual.database import Base


class LeadStatus(str, Enum):
    NEW = "new"
    CALLING = "calling"
    CALL_COMPLETED = "call_completed"
    QUALIFIED = "qualified"
    NOT_QUALIFIED = "not_qualified"


TERMINAL_STATUSES = frozenset(
    {LeadStatus.CALL_COMPLETED, LeadStatus.QUALIFIED, LeadStatus.NOT_QUALIFIED}
)

# Monotonic ordering: new -> calling -> terminal
_STATUS_RANK = {
    LeadStatus.NEW: 0,
    LeadStatus.CALLING: 1,
    LeadStatus.CALL_COMPLETED: 2,
    LeadStatus.QUALIFIED: 2,
    LeadStatus.NOT_QUALIFIED: 2,
}

QUALIFIED_SCORE_THRESHOLD = 70
NOT_QUALIFIED_SCORE_THRESHOLD = 40


def can_transition(current: LeadStatus, new: LeadStatus) -> bool:
    """
    Status only moves forward. The one terminal-to-terminal move allowed is
    call_completed -> qualified/not_qualified, when a score arrives later.
    """
    current, new = LeadStatus(current), LeadStatus(new)
    if current == new:
        return True
    if current == LeadStatus.CALL_COMPLETED and new in (LeadStatus.QUALIFIED, LeadStatus.NOT_QUALIFIED):
        return True
    return _STATUS_RANK[new] > _STATUS_RANK[current]


def status_for_score(score: int) -> LeadStatus:
    if score >= QUALIFIED_SCORE_THRESHOLD:
        return LeadStatus.QUALIFIED
    if score < NOT_QUALIFIED_SCORE_THRESHOLD:
        return LeadStatus.NOT_QUALIFIED
    return LeadStatus.CALL_COMPLETED


def result_label_for_score(score: int) -> str:
    return {
        LeadStatus.QUALIFIED: "Qualified",
        LeadStatus.NOT_QUALIFIED: "Not Qualified",
        LeadStatus.CALL_COMPLETED: "Potential",
    }[status_for_score(score)]


# Field ownership. Each writer touches its own subset.
CONTACT_FIELDS = frozenset({"name", "surname", "email", "phone", "website"})
STORE_MANAGED_FIELDS = frozenset({"id", "created_at", "updated_at"})
LIFECYCLE_FIELDS = frozenset({"status", "call_started_at", "call_ended_at", "call_duration_seconds"})
QUALIFICATION_FIELDS = frozenset({
    "transcript",
    "call_summary",
    "call_recording_url",
    "qualification_score",
    "qualification_result",
    "key_insights",
    "objections",
    "next_actions",
    "improvement_areas",
    "meeting_scheduled",
    "meeting_datetime",
    "current_platform",
    "monthly_traffic",
    "monthly_orders",
    "implementation_timeline",
})
DATETIME_FIELDS = frozenset({"call_started_at", "call_ended_at", "created_at", "updated_at"})


def _new_id() -> str:
    return str(uuid.uuid4())


class Lead(Base):
    __tablename__ = "leads"

    id = Column(String(36), primary_key=True, default=_new_id)

    # Contact (immutable once created)
    name = Column(String(255), nullable=False)
    surname = Column(String(255), nullable=False, default="")
    email = Column(String(255), index=True, nullable=False)
    phone = Column(String(50), nullable=False)
    website = Column(String(500))

    status = Column(String(50), nullable=False, default=LeadStatus.NEW.value, index=True)

    # ================= Call timing =================
    call_started_at = Column(DateTime(timezone=True))
    call_ended_at = Column(DateTime(timezone=True))
    call_duration_seconds = Column(Integer)

    # ================= Call artifacts =================
    transcript = Column(Text)
    call_summary = Column(Text)
    call_recording_url = Column(String(500))

    # ================= Qualification =================
    qualification_score = Column(Integer)
    qualification_result = Column(String(50))
    key_insights = Column(JSON)
    objections = Column(JSON)
    next_actions = Column(JSON)
    improvement_areas = Column(JSON)

    # ================= Scheduling =================
    meeting_scheduled = Column(Boolean, nullable=False, default=False)
    # kept as the ISO-8601 string the agent or model produced
    meeting_datetime = Column(String(64))

    # ================= Prospect profile =================
    current_platform = Column(String(255))
    monthly_traffic = Column(Integer)
    monthly_orders = Column(Integer)
    implementation_timeline = Column(String(255))

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


def lead_to_dict(lead: Lead) -> dict:
    out = {}
    for column in Lead.__table__.columns:
        value = getattr(lead, column.name, None)
        if column.name in DATETIME_FIELDS and value is not None:
            value = value.isoformat()
        out[column.name] = value
    return out
