from sqlalchemy import String, BigInteger, DateTime, Text, Boolean, Integer, Numeric, JSON, CheckConstraint, Index, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func
from locker.database import Base
from datetime import datetime
from decimal import Decimal
from typing import Optional

# Rates carry 4 decimals, per-click earnings (rate / 1000) need 7
Money = Numeric(20, 8)

class UserProfile(Base):
    """Account of a link owner or admin; identity comes from the external provider"""
    __tablename__ = "user_profiles"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    email: Mapped[str] = mapped_column(String(255), index=True)
    display_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    role: Mapped[str] = mapped_column(String(20), default='user')
    account_status: Mapped[str] = mapped_column(String(20), default='active')
    custom_cpm: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)
    # Total ever paid out; only payout approval increments it
    paid_earnings: Mapped[Decimal] = mapped_column(Money, default=Decimal('0'))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint("role IN ('user', 'admin')", name='check_user_role'),
        CheckConstraint("account_status IN ('active', 'suspended')", name='check_account_status'),
        CheckConstraint('paid_earnings >= 0', name='check_paid_earnings_non_negative'),
        CheckConstraint('custom_cpm IS NULL OR custom_cpm >= 0', name='check_custom_cpm_non_negative'),
    )

class Link(Base):
    """Shortened URL gated behind rules and sponsors"""
    __tablename__ = "links"

    id: Mapped[int] = mapped_column(primary_key=True)
    owner_id: Mapped[str] = mapped_column(String(128), ForeignKey('user_profiles.id', ondelete='CASCADE'), index=True)
    destination_url: Mapped[str] = mapped_column(Text)
    short_code: Mapped[str] = mapped_column(String(32), unique=True, index=True)
    title: Mapped[str] = mapped_column(String(255))
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # Ordered list of {"type": ..., "url": ...}
    rules: Mapped[list] = mapped_column(JSON, default=list)
    monetizable: Mapped[bool] = mapped_column(Boolean, default=False)
    monetization_status: Mapped[str] = mapped_column(String(20), default='active')
    clicks: Mapped[int] = mapped_column(BigInteger, default=0)
    generated_earnings: Mapped[Decimal] = mapped_column(Money, default=Decimal('0'))
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint("monetization_status IN ('active', 'suspended')", name='check_monetization_status'),
        CheckConstraint('clicks >= 0', name='check_clicks_non_negative'),
        CheckConstraint('generated_earnings >= 0', name='check_generated_earnings_non_negative'),
    )

class ClickEvent(Base):
    """Append-only record of one completed visit"""
    __tablename__ = "click_events"

    id: Mapped[int] = mapped_column(primary_key=True)
    link_id: Mapped[int] = mapped_column(Integer, ForeignKey('links.id'), index=True)
    owner_id: Mapped[str] = mapped_column(String(128), index=True)
    visitor_ip: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)  # IPv6 support
    user_agent: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    country_code: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)
    cpm_used: Mapped[Decimal] = mapped_column(Money, default=Decimal('0'))
    earnings_generated: Mapped[Decimal] = mapped_column(Money, default=Decimal('0'))
    monetized: Mapped[bool] = mapped_column(Boolean, default=False)
    reason: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    gate_session_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index('idx_click_events_link_created', 'link_id', 'created_at'),
    )

class CpmPeriod(Base):
    """One interval of the global CPM rate; ended_at is NULL while active"""
    __tablename__ = "cpm_periods"

    id: Mapped[int] = mapped_column(primary_key=True)
    rate: Mapped[Decimal] = mapped_column(Money)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    ended_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    created_by: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    __table_args__ = (
        CheckConstraint('rate >= 0', name='check_cpm_rate_non_negative'),
    )

class PayoutRequest(Base):
    __tablename__ = "payout_requests"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), ForeignKey('user_profiles.id', ondelete='CASCADE'), index=True)
    amount: Mapped[Decimal] = mapped_column(Money)
    method: Mapped[str] = mapped_column(String(50))
    details: Mapped[str] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(20), default='pending', index=True)
    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    processed_by: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    __table_args__ = (
        CheckConstraint("status IN ('pending', 'completed', 'rejected')", name='check_payout_status'),
        CheckConstraint('amount > 0', name='check_payout_amount_positive'),
    )

class BalanceAdjustment(Base):
    """Signed manual ledger entry made by an admin"""
    __tablename__ = "balance_adjustments"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), ForeignKey('user_profiles.id', ondelete='CASCADE'), index=True)
    amount: Mapped[Decimal] = mapped_column(Money)
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    admin_id: Mapped[str] = mapped_column(String(128))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

class SponsorRule(Base):
    """Paid placement shown in a link's gate"""
    __tablename__ = "sponsor_rules"

    id: Mapped[int] = mapped_column(primary_key=True)
    link_id: Mapped[int] = mapped_column(Integer, ForeignKey('links.id', ondelete='CASCADE'), index=True)
    title: Mapped[str] = mapped_column(String(50))
    sponsor_url: Mapped[str] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    views: Mapped[int] = mapped_column(BigInteger, default=0)
    clicks: Mapped[int] = mapped_column(BigInteger, default=0)

    __table_args__ = (
        Index('idx_sponsor_rules_link_active', 'link_id', 'is_active'),
    )

class GlobalVisit(Base):
    """Server-side half of the abuse window: last monetized view per IP"""
    __tablename__ = "global_visits"

    ip: Mapped[str] = mapped_column(String(45), primary_key=True)
    last_visit: Mapped[int] = mapped_column(BigInteger)  # epoch millis

class GateSession(Base):
    """Server-issued gate run; all timing is checked against these timestamps"""
    __tablename__ = "gate_sessions"

    id: Mapped[int] = mapped_column(primary_key=True)
    token: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    link_id: Mapped[int] = mapped_column(Integer, ForeignKey('links.id', ondelete='CASCADE'), index=True)
    visitor_ip: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    started_at_ms: Mapped[int] = mapped_column(BigInteger)
    # Sponsors presented when the gate started
    sponsor_ids: Mapped[list] = mapped_column(JSON, default=list)
    # item key -> epoch millis when the visitor opened it
    opened: Mapped[dict] = mapped_column(JSON, default=dict)
    consumed_at_ms: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)

class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), ForeignKey('user_profiles.id', ondelete='CASCADE'), index=True)
    type: Mapped[str] = mapped_column(String(40))
    message: Mapped[str] = mapped_column(Text)
    link_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

class Settings(Base):
    """Runtime settings editable by admins (single row)"""
    __tablename__ = "settings"

    id: Mapped[int] = mapped_column(primary_key=True)
    minimum_payout: Mapped[Decimal] = mapped_column(Money, default=Decimal('10'))
    payouts_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
