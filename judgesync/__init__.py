"""
JudgeSync - Case-Law Mirror Service

FastAPI + APScheduler service that mirrors CourtListener courts, judges and
decisions into PostgreSQL and keeps them fresh under upstream rate limits.
"""

__version__ = "0.1.0"
