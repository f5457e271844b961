"""
SQLAlchemy 2.0 ORM models for the Fixture Calendar.
Column types are portable so the same schema runs on PostgreSQL and SQLite.
"""
from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Integer,
    SmallInteger,
    String,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class FixtureORM(Base):
    __tablename__ = "fixtures"
    __table_args__ = (
        CheckConstraint("home_team != away_team", name="chk_different_teams"),
        CheckConstraint("(home_score IS NULL) = (away_score IS NULL)", name="chk_score_pair"),
    )

    home_team: Mapped[str] = mapped_column(String(200), primary_key=True)
    away_team: Mapped[str] = mapped_column(String(200), primary_key=True)
    match_date: Mapped[date] = mapped_column(Date, primary_key=True)
    competition: Mapped[str] = mapped_column(String(200), primary_key=True)
    kickoff: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="scheduled")
    home_score: Mapped[Optional[int]] = mapped_column(SmallInteger)
    away_score: Mapped[Optional[int]] = mapped_column(SmallInteger)
    round_number: Mapped[Optional[int]] = mapped_column(SmallInteger)
    round_label: Mapped[Optional[str]] = mapped_column(String(100))
    season: Mapped[Optional[str]] = mapped_column(String(20))
    is_derby: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    observed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    source: Mapped[Optional[str]] = mapped_column(String(50))
    needs_review: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class StandingORM(Base):
    __tablename__ = "standings"

    competition: Mapped[str] = mapped_column(String(200), primary_key=True)
    season: Mapped[str] = mapped_column(String(20), primary_key=True)
    club: Mapped[str] = mapped_column(String(200), primary_key=True)
    position: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    played: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=0)
    won: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=0)
    drawn: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=0)
    lost: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=0)
    goals_for: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=0)
    goals_against: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=0)
    goal_difference: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=0)
    points: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=0)
    form: Mapped[str] = mapped_column(String(10), nullable=False, default="")
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class CacheMetaORM(Base):
    __tablename__ = "cache_meta"

    resource: Mapped[str] = mapped_column(String(100), primary_key=True)
    last_updated: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    record_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class ScheduledRefreshORM(Base):
    __tablename__ = "scheduled_refreshes"

    fixture_key: Mapped[str] = mapped_column(String(600), primary_key=True)
    resource: Mapped[str] = mapped_column(String(100), nullable=False)
    due_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    kickoff: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    home_team: Mapped[str] = mapped_column(String(200), nullable=False)
    away_team: Mapped[str] = mapped_column(String(200), nullable=False)
