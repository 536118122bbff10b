from app.models.application import Application
from app.models.order import Order
from app.schemas.application import ApplicationOut, ConversionOut
from app.schemas.order import OrderOut, OrderStatistics, PaymentInfoOut, PaymentSessionOut, SweepOut


def build_order_response(order: Order) -> OrderOut:
    return OrderOut(
        id=order.id,
        client_id=order.client_id,
        coordinator_id=order.coordinator_id,
        application_id=order.application_id,
        menu_items=order.menu_items or [],
        items_total=order.items_total,
        discount_fixed=order.discount_fixed,
        discount_percent=order.discount_percent,
        discount_amount=order.discount_amount,
        delivery_cost=order.delivery_cost,
        final_amount=order.final_amount,
        delivery_date=order.delivery_date,
        delivery_time=order.delivery_time,
        delivery_type=order.delivery_type,
        delivery_address=order.delivery_address,
        status=order.status,
        payment_status=order.payment_status,
        payment_attempts=order.payment_attempts,
        payment_url=order.payment_url,
        payment_created_at=order.payment_created_at,
        payment_completed_at=order.payment_completed_at,
        comment=order.comment,
        special_instructions=order.special_instructions,
        created_at=order.created_at,
        updated_at=order.updated_at,
    )


def build_application_response(application: Application) -> ApplicationOut:
    return ApplicationOut(
        id=application.id,
        first_name=application.first_name,
        last_name=application.last_name,
        email=application.email,
        phone=application.phone,
        message=application.message,
        cart_items=application.cart_items or [],
        event_date=application.event_date,
        event_time=application.event_time,
        event_address=application.event_address,
        status=application.status,
        client_id=application.client_id,
        coordinator_id=application.coordinator_id,
        coordinator_comment=application.coordinator_comment,
        processed_at=application.processed_at,
        created_at=application.created_at,
        updated_at=application.updated_at,
    )


def build_conversion_response(result) -> ConversionOut:
    return ConversionOut(
        order=build_order_response(result.order),
        application=build_application_response(result.application),
        client_created=result.client_created,
    )


def build_payment_session_response(order: Order) -> PaymentSessionOut:
    return PaymentSessionOut(
        order_id=order.id,
        payment_url=order.payment_url,
        attempts=order.payment_attempts,
        gateway_order_id=order.gateway_order_id,
    )


def build_payment_info_response(info) -> PaymentInfoOut:
    return PaymentInfoOut(
        order_id=info.order_id,
        payment_status=info.payment_status,
        order_status=info.order_status,
        amount=info.amount,
        amount_charged=info.amount_charged,
        amount_refunded=info.amount_refunded,
        attempts=info.attempts,
        can_retry=info.can_retry,
        payment_url=info.payment_url,
        created_at=info.created_at,
        completed_at=info.completed_at,
    )


def build_statistics_response(stats) -> OrderStatistics:
    return OrderStatistics(total=stats.total, by_status=stats.by_status, total_amount=stats.total_amount)


def build_sweep_response(result) -> SweepOut:
    return SweepOut(
        processing_count=result.processing_count,
        completed_count=result.completed_count,
        failed_count=result.failed_count,
    )


def build_order_response_list(orders: list) -> list:
    return [build_order_response(order) for order in orders]


def build_application_response_list(applications: list) -> list:
    return [build_application_response(application) for application in applications]
