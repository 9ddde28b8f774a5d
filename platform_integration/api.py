"""
FastAPI Router for Trading Platform Endpoints.

Thin HTTP surface over IntegrationFacade:
- List supported platforms
- Connect / test / disconnect a platform
- List a user's connections with account snapshots
- Trigger a synchronous account sync
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, Response, status

from .facade import ConnectionView, IntegrationFacade
from .schemas import (
    AccountResponse,
    ConnectionEntry,
    ConnectionResponse,
    ConnectRequest,
    DisconnectRequest,
    OperationResponse,
    PlatformResponse,
)
from .types import OperationResult, PlatformDescriptor


logger = logging.getLogger(__name__)

router = APIRouter(tags=["Trading Platforms"])


# =============================================================
# DEPENDENCIES
# =============================================================

def get_facade(request: Request) -> IntegrationFacade:
    facade = getattr(request.app.state, "facade", None)
    if facade is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Integration layer not ready")
    return facade


def get_user_id(
    x_user_id: Optional[int] = Header(None, alias="X-User-Id"),
    user_id: Optional[int] = Query(None, alias="userId"),
) -> int:
    resolved = x_user_id if x_user_id is not None else user_id
    if resolved is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User id required")
    return resolved


# =============================================================
# HELPERS
# =============================================================

def _platform_response(platform: PlatformDescriptor) -> PlatformResponse:
    return PlatformResponse(
        id=platform.id,
        slug=platform.slug,
        name=platform.name,
        platform_type=platform.platform_type.value,
        api_base_url=platform.api_base_url,
        web_trade_url=platform.web_trade_url,
        supports_api=platform.supports_api,
        supports_web_trading=platform.supports_web_trading,
        configuration=platform.configuration,
    )


def _connection_entry(view: ConnectionView) -> ConnectionEntry:
    account = None
    if view.account is not None:
        account = AccountResponse(
            account_number=view.account.account_number,
            account_name=view.account.account_name,
            account_type=view.account.account_type.value,
            currency=view.account.currency,
            balance=view.account.balance,
            equity=view.account.equity,
            margin=view.account.margin,
            free_margin=view.account.free_margin,
            last_updated=view.account_last_updated,
        )
    return ConnectionEntry(
        connection=ConnectionResponse(
            id=view.connection_id,
            platform_id=view.platform.id,
            remote_account_id=view.remote_account_id,
            is_connected=view.is_connected,
            last_sync_at=view.last_sync_at,
            last_sync_error=view.last_sync_error,
            created_at=view.created_at,
        ),
        platform=_platform_response(view.platform),
        account=account,
        stale_since=view.stale_since,
    )


def _operation_response(result: OperationResult, response: Response) -> OperationResponse:
    if not result.success:
        response.status_code = status.HTTP_400_BAD_REQUEST
    return OperationResponse(success=result.success, message=result.message)


# =============================================================
# ENDPOINTS
# =============================================================

@router.get("/platforms", response_model=List[PlatformResponse])
async def list_platforms(facade: IntegrationFacade = Depends(get_facade)):
    """List active trading platforms."""
    result = await facade.list_platforms()
    if not result.success:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=result.message)
    return [_platform_response(p) for p in result.data]


@router.post("/connect", response_model=OperationResponse)
async def connect_platform(
    body: ConnectRequest,
    response: Response,
    user_id: int = Depends(get_user_id),
    facade: IntegrationFacade = Depends(get_facade),
):
    """Connect the user to a platform and run the first sync."""
    result = await facade.connect(user_id, body.platform_id, body.credentials.to_credentials())
    return _operation_response(result, response)


@router.post("/test-connection", response_model=OperationResponse)
async def test_platform_connection(
    body: ConnectRequest,
    response: Response,
    facade: IntegrationFacade = Depends(get_facade),
):
    """Check credentials against a platform without saving anything."""
    result = await facade.test_connection(body.platform_id, body.credentials.to_credentials())
    return _operation_response(result, response)


@router.get("/connections", response_model=List[ConnectionEntry])
async def list_connections(
    user_id: int = Depends(get_user_id),
    facade: IntegrationFacade = Depends(get_facade),
):
    result = await facade.list_connections(user_id)
    if not result.success:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=result.message)
    return [_connection_entry(v) for v in result.data]


@router.post("/disconnect", response_model=OperationResponse)
async def disconnect_platform(
    body: DisconnectRequest,
    response: Response,
    user_id: int = Depends(get_user_id),
    facade: IntegrationFacade = Depends(get_facade),
):
    result = await facade.disconnect(user_id, body.connection_id)
    return _operation_response(result, response)


@router.post("/sync/{connection_id}", response_model=OperationResponse)
async def sync_connection(
    connection_id: int,
    response: Response,
    facade: IntegrationFacade = Depends(get_facade),
):
    """Synchronize one connection now."""
    result = await facade.trigger_sync(connection_id)
    return _operation_response(result, response)
