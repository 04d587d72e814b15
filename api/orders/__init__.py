"""Orders API endpoints."""

import logging
from decimal import Decimal
from typing import Any, Dict
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status

from auth import get_current_user
from database.exceptions import DatabaseError
from orders import (
    OrderManager,
    CreateOrderRequest,
    ValidationError,
    ItemNotFoundError,
    ItemNotAvailableError,
    OrderNotFoundError,
    OrderPermissionError,
    OrderStateError,
)
from payments import PaymentGatewayError
from ..dependencies import get_order_manager

logger = logging.getLogger(__name__)

# Create router
router = APIRouter(
    prefix="/orders",
    tags=["Orders"]
)

def _serialize(row: Dict[str, Any]) -> Dict[str, Any]:
    """Render Decimals as strings so crypto amounts keep full precision."""
    return {
        key: str(value) if isinstance(value, Decimal) else value
        for key, value in row.items()
    }

@router.post("", status_code=status.HTTP_201_CREATED)
async def create_order(
    order_request: CreateOrderRequest,
    user_id: str = Depends(get_current_user),
    manager: OrderManager = Depends(get_order_manager)
):
    """Reserve an item with a pending order."""
    try:
        order = await manager.create_pending_order(
            buyer_id=user_id,
            item_id=order_request.item_id,
            payment_method=order_request.payment_method,
            details=order_request.crypto
        )
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except ItemNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ItemNotAvailableError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except PaymentGatewayError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    except DatabaseError:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create order"
        )
    return _serialize(order)

@router.get("/{order_id}/status")
async def get_order_status(
    order_id: UUID,
    user_id: str = Depends(get_current_user),
    manager: OrderManager = Depends(get_order_manager)
):
    """Get the status of one of the caller's orders."""
    order_status = await manager.check_order_status(order_id, buyer_id=user_id)
    if order_status is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Order {order_id} not found"
        )
    return {'order_id': order_id, 'status': order_status}

@router.get("/{order_id}")
async def get_order(
    order_id: UUID,
    user_id: str = Depends(get_current_user),
    manager: OrderManager = Depends(get_order_manager)
):
    """Get order details. Visible to the buyer and the seller."""
    order = await manager.get_order(order_id)
    if not order or user_id not in (order['buyer_id'], order['seller_id']):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Order {order_id} not found"
        )
    return _serialize(order)

@router.post("/{order_id}/cancel")
async def cancel_order(
    order_id: UUID,
    user_id: str = Depends(get_current_user),
    manager: OrderManager = Depends(get_order_manager)
):
    """Cancel a pending card order and release the item."""
    try:
        return await manager.cancel_order(order_id, buyer_id=user_id)
    except OrderNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except OrderPermissionError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except OrderStateError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except DatabaseError:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to cancel order"
        )
