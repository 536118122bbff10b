"""Authorization helpers shared by the routers"""
from fastapi import HTTPException


def check_order_access(order, current_user) -> None:

    if current_user.is_client and order.client_id != int(current_user.id):
        raise HTTPException(
            status_code=403,
            detail="Forbidden: You can only access your own orders"
        )

