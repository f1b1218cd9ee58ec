from __future__ import annotations
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Integer, Float, Text
from .db import Base


class AuthUser(Base):
	__tablename__ = "auth_users"
	username = Column(String(128), primary_key=True, index=True)
	password_hash = Column(String(256), nullable=False)
	email = Column(String(256), nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class AuthSession(Base):
	__tablename__ = "auth_sessions"
	# JWT "jti" claim; deleting the row revokes the token
	session_id = Column(String(64), primary_key=True)
	username = Column(String(128), nullable=False, index=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	last_activity_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class SpeakingModule(Base):
	__tablename__ = "speaking_module"
	username = Column(String(128), primary_key=True)
	# Single entry per username holding the most recently finished session
	last_session_id = Column(String(64), nullable=True)
	test_part = Column(Integer, nullable=True)
	end_reason = Column(String(16), nullable=True)
	questions_asked = Column(Integer, default=0, nullable=False)
	evaluation_status = Column(String(16), nullable=True)
	overall_band = Column(Float, nullable=True)
	last_session_json = Column(Text, nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
