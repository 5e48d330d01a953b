from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# SQLite only autoincrements INTEGER PRIMARY KEY columns.
IdType = BigInteger().with_variant(Integer(), 'sqlite')


class Base(DeclarativeBase):
    pass


class UserRole(str, Enum):
    RESIDENT = 'resident'
    SECURITY = 'security'
    ADMIN = 'admin'


class VisitStatus(str, Enum):
    PENDING = 'pending'
    CHECKED_IN = 'checked_in'
    REJECTED = 'rejected'


class VisitOrigin(str, Enum):
    INVITED = 'invited'
    MANUAL_SIGN_IN = 'manual_sign_in'


class Apartment(Base):
    __tablename__ = 'apartments'

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Block(Base):
    __tablename__ = 'blocks'

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    apartment_id: Mapped[int | None] = mapped_column(IdType, ForeignKey('apartments.id', ondelete='CASCADE'))
    name: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Flat(Base):
    __tablename__ = 'flats'
    __table_args__ = (
        UniqueConstraint('unique_id', name='flats_unique_id_key'),
    )

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    apartment_id: Mapped[int | None] = mapped_column(IdType, ForeignKey('apartments.id', ondelete='CASCADE'))
    block_id: Mapped[int | None] = mapped_column(IdType, ForeignKey('blocks.id', ondelete='CASCADE'))
    number: Mapped[str] = mapped_column(Text, nullable=False)
    unique_id: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class User(Base):
    __tablename__ = 'users'
    __table_args__ = (
        UniqueConstraint('phone', name='users_phone_key'),
    )

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    phone: Mapped[str] = mapped_column(Text, nullable=False)
    password_hash: Mapped[str] = mapped_column(Text, nullable=False)
    role: Mapped[UserRole] = mapped_column(SQLEnum(UserRole, name='user_role'), nullable=False)
    apartment_id: Mapped[int | None] = mapped_column(IdType, ForeignKey('apartments.id', ondelete='SET NULL'))
    flat_id: Mapped[int | None] = mapped_column(IdType, ForeignKey('flats.id', ondelete='SET NULL'))
    is_approved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Guest(Base):
    __tablename__ = 'guests'

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    phone: Mapped[str | None] = mapped_column(Text)
    invited_by: Mapped[int | None] = mapped_column(IdType, ForeignKey('users.id', ondelete='CASCADE'))
    is_daily_pass: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Visit(Base):
    __tablename__ = 'visits'
    __table_args__ = (
        UniqueConstraint('qr_token', name='visits_qr_token_key'),
    )

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    guest_id: Mapped[int] = mapped_column(IdType, ForeignKey('guests.id', ondelete='CASCADE'), nullable=False)
    flat_id: Mapped[int] = mapped_column(IdType, ForeignKey('flats.id', ondelete='CASCADE'), nullable=False)
    checked_by: Mapped[int | None] = mapped_column(IdType, ForeignKey('users.id', ondelete='SET NULL'))
    status: Mapped[VisitStatus] = mapped_column(
        SQLEnum(VisitStatus, name='visit_status'), nullable=False, default=VisitStatus.PENDING, server_default='PENDING'
    )
    origin: Mapped[VisitOrigin] = mapped_column(SQLEnum(VisitOrigin, name='visit_origin'), nullable=False)
    qr_token: Mapped[str | None] = mapped_column(Text)
    is_qr_used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    purpose: Mapped[str | None] = mapped_column(Text)
    expected_arrival: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    checked_in_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class PushToken(Base):
    __tablename__ = 'push_tokens'
    __table_args__ = (
        UniqueConstraint('token', name='push_tokens_token_key'),
    )

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    user_id: Mapped[int] = mapped_column(IdType, ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    token: Mapped[str] = mapped_column(Text, nullable=False)
    device_type: Mapped[str] = mapped_column(Text, nullable=False, default='web', server_default='web')
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Notification(Base):
    __tablename__ = 'notifications'

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    user_id: Mapped[int] = mapped_column(IdType, ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    type: Mapped[str] = mapped_column(Text, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    meta: Mapped[dict] = mapped_column('metadata', JSON, nullable=False, default=dict, server_default='{}')
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
