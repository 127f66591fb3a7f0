"""
SQLAlchemy ORM models for the Revengers Esports site.

These declarations are used for schema bootstrap (metadata.create_all); the
request path talks to the tables through StorageGateway with bound SQL.
"""

from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    DateTime,
    CheckConstraint,
    Index,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from revengers.database.db import Base


class Admin(Base):
    """Staff accounts allowed into the admin area."""

    __tablename__ = "admins"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(30), nullable=False, unique=True)
    password = Column(String, nullable=False)  # bcrypt hash
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    last_login = Column(DateTime(timezone=True), nullable=True)


# Usernames are unique regardless of case
Index("idx_admins_username_lower", func.lower(Admin.username), unique=True)


class Player(Base):
    __tablename__ = "players"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    jersey_number = Column(Integer, nullable=False)
    image_url = Column(Text, nullable=True)
    stars = Column(Integer, nullable=False, default=1)
    joined_date = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint("jersey_number BETWEEN 1 AND 99", name="ck_players_jersey_number"),
        CheckConstraint("stars BETWEEN 1 AND 5", name="ck_players_stars"),
        Index("idx_players_joined_date", "joined_date"),
    )


class Manager(Base):
    __tablename__ = "managers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    role = Column(String(100), nullable=False)
    image_url = Column(Text, nullable=True)
    joined_date = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (Index("idx_managers_joined_date", "joined_date"),)


class Trophy(Base):
    __tablename__ = "trophies"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    year = Column(Integer, nullable=False)
    image_url = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint("year >= 1900", name="ck_trophies_year"),
        Index("idx_trophies_created_at", "created_at"),
    )


class ContactSubmission(Base):
    """Messages sent through the public contact form. Never updated."""

    __tablename__ = "contact_submissions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    email = Column(String(254), nullable=False)
    whatsapp = Column(String(16), nullable=False)
    submission_date = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (Index("idx_contact_submissions_date", "submission_date"),)


class WebSession(Base):
    """Server-side session rows keyed by the id carried in the signed cookie."""

    __tablename__ = "sessions"

    sid = Column(String(64), primary_key=True)
    sess = Column(JSONB, nullable=False)
    expire = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("idx_sessions_expire", "expire"),)
