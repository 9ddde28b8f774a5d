"""
Platform Integration - Repository.

============================================================
PURPOSE
============================================================
Database operations for the venue mirror.

RESPONSIBILITIES:
- Platform descriptor lookup/insert
- Connection create/update (never delete)
- Account snapshot upsert
- Trade upsert keyed by (connection_id, platform_trade_id)

CRITICAL REQUIREMENTS:
- The repository never commits; callers own the transaction
  (see database.transaction_scope)
- Every SQLAlchemy failure surfaces as PersistenceError
- Orphan accounts/trades are refused

============================================================
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from .errors import ConnectionNotFoundError, PersistenceError
from .models import (
    PlatformTradeModel,
    TradingPlatformAccountModel,
    TradingPlatformModel,
    UserPlatformConnectionModel,
    quantize_money,
)
from .types import (
    AccountInfo,
    ConnectorSession,
    PlatformDescriptor,
    PlatformType,
    TradeInfo,
)


logger = logging.getLogger(__name__)


ACCOUNT_FIELDS = (
    "account_number",
    "account_name",
    "account_type",
    "currency",
    "balance",
    "equity",
    "margin",
    "free_margin",
)

TRADE_FIELDS = (
    "symbol",
    "side",
    "quantity",
    "price",
    "stop_loss",
    "take_profit",
    "status",
    "order_type",
    "commission",
    "swap",
    "profit",
    "open_time",
    "close_time",
)


def to_descriptor(model: TradingPlatformModel) -> PlatformDescriptor:
    """Convert a platform row to its descriptor."""
    return PlatformDescriptor(
        id=model.id,
        slug=model.slug,
        name=model.name,
        platform_type=PlatformType(model.platform_type),
        api_base_url=model.api_base_url,
        web_trade_url=model.web_trade_url,
        supports_api=model.supports_api,
        supports_web_trading=model.supports_web_trading,
        configuration=dict(model.configuration or {}),
    )


def session_from_connection(connection: UserPlatformConnectionModel) -> ConnectorSession:
    """Rebuild a connector session from persisted tokens."""
    return ConnectorSession(
        access_token=connection.access_token or "",
        remote_account_id=connection.remote_account_id,
        refresh_token=connection.refresh_token,
        token_expiry=connection.token_expiry,
        connection_data=dict(connection.connection_data or {}),
    )


def _account_values(info: AccountInfo) -> Dict[str, Any]:
    return {
        "account_number": info.account_number,
        "account_name": info.account_name,
        "account_type": info.account_type.value,
        "currency": info.currency,
        "balance": quantize_money(info.balance),
        "equity": quantize_money(info.equity),
        "margin": quantize_money(info.margin),
        "free_margin": quantize_money(info.free_margin),
    }


def _trade_values(trade: TradeInfo) -> Dict[str, Any]:
    return {
        "symbol": trade.symbol,
        "side": trade.side.value,
        "quantity": quantize_money(trade.quantity),
        "price": quantize_money(trade.price),
        "stop_loss": quantize_money(trade.stop_loss),
        "take_profit": quantize_money(trade.take_profit),
        "status": trade.status.value,
        "order_type": trade.order_type.value,
        "commission": quantize_money(trade.commission),
        "swap": quantize_money(trade.swap),
        "profit": quantize_money(trade.profit),
        "open_time": trade.open_time,
        "close_time": trade.close_time,
    }


# ============================================================
# INTEGRATION REPOSITORY
# ============================================================

class IntegrationRepository:
    """
    Repository for the integration tables.

    One instance per AsyncSession.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    @property
    def session(self) -> AsyncSession:
        return self._session

    def _handle_db_error(self, error: Exception, operation: str) -> None:
        logger.error(f"Database error in {operation}: {error}")
        raise PersistenceError(operation, str(error)) from error

    # --------------------------------------------------------
    # PLATFORMS
    # --------------------------------------------------------

    async def get_platform(self, platform_id: int) -> Optional[TradingPlatformModel]:
        try:
            return await self._session.get(TradingPlatformModel, platform_id)
        except SQLAlchemyError as e:
            self._handle_db_error(e, "get_platform")

    async def get_platform_by_slug(self, slug: str) -> Optional[TradingPlatformModel]:
        try:
            result = await self._session.execute(
                select(TradingPlatformModel).where(TradingPlatformModel.slug == slug)
            )
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            self._handle_db_error(e, "get_platform_by_slug")

    async def list_platforms(self, active_only: bool = True) -> List[TradingPlatformModel]:
        try:
            stmt = select(TradingPlatformModel).order_by(TradingPlatformModel.id)
            if active_only:
                stmt = stmt.where(TradingPlatformModel.is_active.is_(True))
            result = await self._session.execute(stmt)
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            self._handle_db_error(e, "list_platforms")

    async def add_platform(self, descriptor: PlatformDescriptor) -> TradingPlatformModel:
        model = TradingPlatformModel(
            slug=descriptor.slug,
            name=descriptor.name,
            platform_type=descriptor.platform_type.value,
            api_base_url=descriptor.api_base_url,
            web_trade_url=descriptor.web_trade_url,
            supports_api=descriptor.supports_api,
            supports_web_trading=descriptor.supports_web_trading,
            configuration=dict(descriptor.configuration),
            is_active=True,
        )
        try:
            self._session.add(model)
            await self._session.flush()
            return model
        except SQLAlchemyError as e:
            self._handle_db_error(e, "add_platform")

    # --------------------------------------------------------
    # CONNECTIONS
    # --------------------------------------------------------

    async def get_connection(self, connection_id: int) -> Optional[UserPlatformConnectionModel]:
        try:
            result = await self._session.execute(
                select(UserPlatformConnectionModel)
                .options(
                    selectinload(UserPlatformConnectionModel.platform),
                    selectinload(UserPlatformConnectionModel.account),
                )
                .where(UserPlatformConnectionModel.id == connection_id)
            )
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            self._handle_db_error(e, "get_connection")

    async def require_connection(self, connection_id: int) -> UserPlatformConnectionModel:
        connection = await self.get_connection(connection_id)
        if connection is None:
            raise ConnectionNotFoundError(connection_id)
        return connection

    async def find_connection(self, user_id: int, platform_id: int) -> Optional[UserPlatformConnectionModel]:
        try:
            result = await self._session.execute(
                select(UserPlatformConnectionModel)
                .where(
                    UserPlatformConnectionModel.user_id == user_id,
                    UserPlatformConnectionModel.platform_id == platform_id,
                )
                .order_by(UserPlatformConnectionModel.id)
                .limit(1)
            )
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            self._handle_db_error(e, "find_connection")

    async def add_connection(
        self,
        user_id: int,
        platform_id: int,
        credential_handle: str,
        session: ConnectorSession,
    ) -> UserPlatformConnectionModel:
        model = UserPlatformConnectionModel(
            user_id=user_id,
            platform_id=platform_id,
            credential_handle=credential_handle,
            is_connected=True,
            connection_data={},
        )
        self.apply_session(model, session)
        try:
            self._session.add(model)
            await self._session.flush()
            return model
        except SQLAlchemyError as e:
            self._handle_db_error(e, "add_connection")

    @staticmethod
    def apply_session(connection: UserPlatformConnectionModel, session: ConnectorSession) -> None:
        """Copy tokens from a connector session onto a connection row."""
        connection.access_token = session.access_token
        connection.refresh_token = session.refresh_token
        connection.token_expiry = session.token_expiry
        if session.remote_account_id is not None:
            connection.remote_account_id = session.remote_account_id
        connection.connection_data = dict(session.connection_data)

    async def list_user_connections(self, user_id: int) -> List[UserPlatformConnectionModel]:
        try:
            result = await self._session.execute(
                select(UserPlatformConnectionModel)
                .options(
                    selectinload(UserPlatformConnectionModel.platform),
                    selectinload(UserPlatformConnectionModel.account),
                )
                .where(UserPlatformConnectionModel.user_id == user_id)
                .order_by(UserPlatformConnectionModel.id)
            )
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            self._handle_db_error(e, "list_user_connections")

    async def list_connected_ids(self) -> List[int]:
        try:
            result = await self._session.execute(
                select(UserPlatformConnectionModel.id)
                .where(UserPlatformConnectionModel.is_connected.is_(True))
                .order_by(UserPlatformConnectionModel.id)
            )
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            self._handle_db_error(e, "list_connected_ids")

    async def record_sync_success(self, connection: UserPlatformConnectionModel, at: datetime) -> None:
        connection.last_sync_at = at
        connection.last_sync_error = None
        connection.last_sync_error_at = None
        await self._flush("record_sync_success")

    async def record_sync_failure(self, connection_id: int, message: str, at: datetime) -> None:
        connection = await self.require_connection(connection_id)
        connection.last_sync_error = message
        connection.last_sync_error_at = at
        await self._flush("record_sync_failure")

    # --------------------------------------------------------
    # ACCOUNT SNAPSHOT
    # --------------------------------------------------------

    async def get_account(self, connection_id: int) -> Optional[TradingPlatformAccountModel]:
        try:
            result = await self._session.execute(
                select(TradingPlatformAccountModel).where(
                    TradingPlatformAccountModel.connection_id == connection_id
                )
            )
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            self._handle_db_error(e, "get_account")

    async def upsert_account(self, connection_id: int, info: AccountInfo, now: datetime) -> bool:
        """
        Update the snapshot if it exists, else insert it.

        last_updated only advances when a value actually changed,
        so syncing an unchanged remote account is a no-op.

        Returns:
            True if a row was inserted or changed
        """
        await self.require_connection(connection_id)
        values = _account_values(info)
        existing = await self.get_account(connection_id)

        if existing is None:
            self._session.add(
                TradingPlatformAccountModel(connection_id=connection_id, last_updated=now, **values)
            )
            await self._flush("upsert_account")
            return True

        changed = False
        for name in ACCOUNT_FIELDS:
            if getattr(existing, name) != values[name]:
                setattr(existing, name, values[name])
                changed = True
        if changed:
            existing.last_updated = now
            await self._flush("upsert_account")
        return changed

    # --------------------------------------------------------
    # TRADES
    # --------------------------------------------------------

    async def list_trades(self, connection_id: int) -> List[PlatformTradeModel]:
        try:
            result = await self._session.execute(
                select(PlatformTradeModel)
                .where(PlatformTradeModel.connection_id == connection_id)
                .order_by(PlatformTradeModel.id)
            )
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            self._handle_db_error(e, "list_trades")

    async def upsert_trades(self, connection_id: int, trades: Sequence[TradeInfo], now: datetime) -> int:
        """
        Upsert trades keyed by (connection_id, platform_trade_id).

        Returns:
            Number of trades inserted or changed
        """
        await self.require_connection(connection_id)
        existing = {t.platform_trade_id: t for t in await self.list_trades(connection_id)}
        touched = 0

        for trade in trades:
            values = _trade_values(trade)
            row = existing.get(trade.platform_trade_id)
            if row is None:
                row = PlatformTradeModel(
                    connection_id=connection_id,
                    platform_trade_id=trade.platform_trade_id,
                    last_updated=now,
                    **values,
                )
                self._session.add(row)
                existing[trade.platform_trade_id] = row
                touched += 1
                continue

            changed = False
            for name in TRADE_FIELDS:
                if getattr(row, name) != values[name]:
                    setattr(row, name, values[name])
                    changed = True
            if changed:
                row.last_updated = now
                touched += 1

        if touched:
            await self._flush("upsert_trades")
        return touched

    # --------------------------------------------------------
    # HELPERS
    # --------------------------------------------------------

    async def _flush(self, operation: str) -> None:
        try:
            await self._session.flush()
        except SQLAlchemyError as e:
            self._handle_db_error(e, operation)
