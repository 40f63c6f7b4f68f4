from __future__ import annotations

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import relationship

from .db import Base


class Profile(Base):
    __tablename__ = "profiles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(64))


class BusinessObject(Base):
    __tablename__ = "objects"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(128), nullable=False, unique=True)

    methods = relationship("Method", back_populates="business_object", cascade="all, delete-orphan")


class Method(Base):
    __tablename__ = "methods"
    __table_args__ = (UniqueConstraint("object_id", "name", name="uq_methods_object_name"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    object_id = Column(Integer, ForeignKey("objects.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(128), nullable=False)
    tx = Column(Integer, nullable=False, unique=True)

    business_object = relationship("BusinessObject", back_populates="methods")


class PermissionGrant(Base):
    __tablename__ = "permission_grants"
    __table_args__ = (UniqueConstraint("profile_id", "method_id", name="uq_permission_profile_method"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    profile_id = Column(Integer, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    method_id = Column(Integer, ForeignKey("methods.id", ondelete="CASCADE"), nullable=False)


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    request_id = Column(String(64))
    user_id = Column(Integer)
    profile_id = Column(Integer)
    action = Column(String(64), nullable=False)
    object_name = Column(String(128))
    method_name = Column(String(128))
    tx = Column(Integer)
    details = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
