"""
Platform Integration - ORM Models.

============================================================
PURPOSE
============================================================
SQLAlchemy ORM models for the local venue mirror.

TABLES:
- trading_platforms: Venue descriptors (seeded at startup)
- user_platform_connections: One user's authorization to one venue
- trading_platform_accounts: Account snapshot per connection
- platform_trades: Mirrored remote trades
- platform_credentials: Encrypted vault storage

INTEGRITY:
- Accounts and trades always reference a connection
- Connections always reference a platform
- (connection_id, platform_trade_id) is unique
- Connections are never hard-deleted

============================================================
"""

from datetime import datetime
from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from .types import utcnow


# ============================================================
# BASE
# ============================================================

class Base(DeclarativeBase):
    """Declarative base for all integration models."""

    type_annotation_map = {
        datetime: DateTime(),
    }


MONEY_PRECISION = 24
MONEY_SCALE = 8
MONEY_QUANTUM = Decimal(1).scaleb(-MONEY_SCALE)


def quantize_money(value: Optional[Decimal]) -> Optional[Decimal]:
    """
    Round an amount to the stored scale.

    Raises:
        ValueError: Not a number, or too large for the column
    """
    if value is None:
        return None
    try:
        result = Decimal(value).quantize(MONEY_QUANTUM, rounding=ROUND_HALF_EVEN)
    except InvalidOperation as e:
        raise ValueError(f"Amount cannot be stored: {value!r}") from e
    if result.adjusted() >= MONEY_PRECISION - MONEY_SCALE:
        raise ValueError(f"Amount out of range: {value!r}")
    return result


class Money(TypeDecorator):
    """
    Fixed-scale decimal amount.

    Values are quantized to MONEY_SCALE places on the way in, so
    a value read back compares equal to the quantized input.
    SQLite has no exact decimal type; amounts are kept there as
    plain decimal strings.
    """

    impl = Numeric(MONEY_PRECISION, MONEY_SCALE)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(MONEY_PRECISION + 2))
        return dialect.type_descriptor(Numeric(MONEY_PRECISION, MONEY_SCALE, asdecimal=True))

    def process_bind_param(self, value, dialect):
        value = quantize_money(value)
        if value is None or dialect.name != "sqlite":
            return value
        return format(value, "f")

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return quantize_money(Decimal(str(value)))


MONEY = Money()


class TimestampMixin:
    """created_at / updated_at columns (naive UTC)."""

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


# ============================================================
# PLATFORM
# ============================================================

class TradingPlatformModel(Base, TimestampMixin):
    """Persisted venue descriptor."""

    __tablename__ = "trading_platforms"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    slug: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    platform_type: Mapped[str] = mapped_column(String(32), nullable=False)
    api_base_url: Mapped[str] = mapped_column(String(512), nullable=False)
    web_trade_url: Mapped[str] = mapped_column(String(512), nullable=False)
    supports_api: Mapped[bool] = mapped_column(Boolean, default=True)
    supports_web_trading: Mapped[bool] = mapped_column(Boolean, default=True)
    configuration: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)

    connections: Mapped[List["UserPlatformConnectionModel"]] = relationship(back_populates="platform")

    def __repr__(self) -> str:
        return f"<TradingPlatformModel {self.slug} ({self.platform_type})>"


# ============================================================
# CONNECTION
# ============================================================

class UserPlatformConnectionModel(Base, TimestampMixin):
    """
    One user's authorization to one platform.

    Holds an opaque credential handle, never the secret.
    Disconnect flips is_connected; rows are never deleted.
    """

    __tablename__ = "user_platform_connections"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    platform_id: Mapped[int] = mapped_column(ForeignKey("trading_platforms.id"), nullable=False, index=True)

    credential_handle: Mapped[Optional[str]] = mapped_column(String(128))
    remote_account_id: Mapped[Optional[str]] = mapped_column(String(128))

    access_token: Mapped[Optional[str]] = mapped_column(Text)
    refresh_token: Mapped[Optional[str]] = mapped_column(Text)
    token_expiry: Mapped[Optional[datetime]] = mapped_column(DateTime)

    is_connected: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    last_sync_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    last_sync_error: Mapped[Optional[str]] = mapped_column(Text)
    last_sync_error_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    connection_data: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)

    platform: Mapped[TradingPlatformModel] = relationship(back_populates="connections")
    account: Mapped[Optional["TradingPlatformAccountModel"]] = relationship(back_populates="connection")

    __table_args__ = (
        Index("ix_connection_user_platform", "user_id", "platform_id"),
    )

    @property
    def stale_since(self) -> Optional[datetime]:
        """Last good sync time when the most recent sync attempt failed."""
        if self.last_sync_error_at is None:
            return None
        if self.last_sync_at is not None and self.last_sync_at >= self.last_sync_error_at:
            return None
        return self.last_sync_at or self.created_at

    def __repr__(self) -> str:
        return f"<UserPlatformConnectionModel {self.id} user={self.user_id} platform={self.platform_id}>"


# ============================================================
# ACCOUNT SNAPSHOT
# ============================================================

class TradingPlatformAccountModel(Base, TimestampMixin):
    """Normalized account snapshot; exactly one per connection."""

    __tablename__ = "trading_platform_accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    connection_id: Mapped[int] = mapped_column(
        ForeignKey("user_platform_connections.id"), unique=True, nullable=False
    )

    account_number: Mapped[str] = mapped_column(String(64), nullable=False)
    account_name: Mapped[str] = mapped_column(String(128), nullable=False)
    account_type: Mapped[str] = mapped_column(String(16), nullable=False)
    currency: Mapped[str] = mapped_column(String(16), nullable=False)

    balance: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    equity: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    margin: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    free_margin: Mapped[Decimal] = mapped_column(MONEY, nullable=False)

    last_updated: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    connection: Mapped[UserPlatformConnectionModel] = relationship(back_populates="account")


# ============================================================
# TRADES
# ============================================================

class PlatformTradeModel(Base, TimestampMixin):
    """Mirrored remote trade keyed by venue trade id."""

    __tablename__ = "platform_trades"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    connection_id: Mapped[int] = mapped_column(
        ForeignKey("user_platform_connections.id"), nullable=False, index=True
    )
    platform_trade_id: Mapped[str] = mapped_column(String(128), nullable=False)

    symbol: Mapped[str] = mapped_column(String(64), nullable=False)
    side: Mapped[str] = mapped_column(String(8), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    price: Mapped[Optional[Decimal]] = mapped_column(MONEY)
    stop_loss: Mapped[Optional[Decimal]] = mapped_column(MONEY)
    take_profit: Mapped[Optional[Decimal]] = mapped_column(MONEY)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    order_type: Mapped[str] = mapped_column(String(16), nullable=False)
    commission: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"))
    swap: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"))
    profit: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"))
    open_time: Mapped[Optional[datetime]] = mapped_column(DateTime)
    close_time: Mapped[Optional[datetime]] = mapped_column(DateTime)

    last_updated: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("connection_id", "platform_trade_id", name="uq_platform_trade_per_connection"),
    )


# ============================================================
# VAULT STORAGE
# ============================================================

class PlatformCredentialModel(Base):
    """Encrypted secret referenced by a connection's credential handle."""

    __tablename__ = "platform_credentials"

    handle: Mapped[str] = mapped_column(String(128), primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    platform_id: Mapped[int] = mapped_column(ForeignKey("trading_platforms.id"), nullable=False)
    ciphertext: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
