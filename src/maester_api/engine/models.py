# src/maester_api/engine/models.py
from sqlalchemy import Column, Integer, String, DateTime, Text
from sqlalchemy.orm import declarative_base
from datetime import datetime, timezone

Base = declarative_base()

RUNNING = "running"
COMPLETED = "completed"
FAILED = "failed"
TERMINAL_STATES = (COMPLETED, FAILED)


def utcnow():
    # naive UTC, stored as ISO text by SQLite so it sorts lexicographically
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Job(Base):
    __tablename__ = 'jobs'
    job_id = Column(String(36), primary_key=True)
    tenant_id = Column(String, nullable=False, default='', index=True)
    status = Column(String(16), nullable=False, default=RUNNING, index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)
    suites = Column(Text, nullable=True)  # JSON list, verbatim from the request
    severity_filter = Column(Text, nullable=True)  # JSON list
    result = Column(Text, nullable=True)  # JSON JobSummary
    error = Column(Text, nullable=True)
    duration_ms = Column(Integer, nullable=True)

    @property
    def is_terminal(self):
        return self.status in TERMINAL_STATES


class JobStat(Base):
    """Append-only history of terminal jobs. Survives job deletion."""
    __tablename__ = 'job_stats'
    id = Column(Integer, primary_key=True, autoincrement=True)
    job_id = Column(String(36), unique=True, nullable=False)
    status = Column(String(16), nullable=False)
    duration_ms = Column(Integer, nullable=True)
    suites = Column(Text, nullable=True)
    completed_at = Column(DateTime, nullable=False, default=utcnow)
