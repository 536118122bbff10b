import pytest
from decimal import Decimal
from sqlalchemy import update
from sqlalchemy.orm.exc import StaleDataError
from app.core.enums import ClientCategory, OrderStatus, DeliveryType
from app.core.errors import DomainStateError, NotFoundError, PersistenceError, ValidationError
from app.core.optimistic_lock import with_optimistic_retry
from app.models.order import Order
from app.schemas.order import OrderCreate, OrderUpdate
from app.services import order_service
from app.services.notifications import ORDER_CREATED, ORDER_STATUS_CHANGED
from conftest import FailingNotifier


pytestmark = pytest.mark.integration


class TestCreateOrder:

    async def test_staff_creates_order_for_client(self, db, make_staff, make_client, notifier, sample_items):
        staff = await make_staff()
        client = await make_client()
        payload = OrderCreate(
            client_id=client.id,
            menu_items=sample_items,
            discount_fixed=5,
            discount_percent=10,
            delivery_cost=3,
        )

        order = await order_service.create_order(db, payload, staff, notifier)

        assert order.id is not None
        assert order.status == OrderStatus.SUBMITTED
        assert order.coordinator_id == staff.id
        assert order.final_amount == Decimal("33.10")
        assert notifier.names() == [ORDER_CREATED]

    async def test_client_owns_its_order(self, db, make_client, notifier, sample_items):
        client = await make_client()

        order = await order_service.create_order(db, OrderCreate(menu_items=sample_items), client, notifier)

        assert order.client_id == client.id
        assert order.coordinator_id is None

    async def test_client_cannot_order_for_someone_else(self, db, make_client, notifier, sample_items):
        client = await make_client()
        other = await make_client("other@example.com")

        with pytest.raises(ValidationError):
            await order_service.create_order(
                db, OrderCreate(client_id=other.id, menu_items=sample_items), client, notifier,
            )

    async def test_staff_must_name_client(self, db, make_staff, notifier, sample_items):
        staff = await make_staff()

        with pytest.raises(ValidationError):
            await order_service.create_order(db, OrderCreate(menu_items=sample_items), staff, notifier)

    async def test_unknown_client(self, db, make_staff, notifier, sample_items):
        staff = await make_staff()

        with pytest.raises(NotFoundError):
            await order_service.create_order(
                db, OrderCreate(client_id=999, menu_items=sample_items), staff, notifier,
            )

    async def test_submitted_order_needs_items(self, db, make_client, notifier):
        client = await make_client()

        with pytest.raises(ValidationError):
            await order_service.create_order(db, OrderCreate(), client, notifier)

    async def test_empty_draft_allowed(self, db, make_client, notifier):
        client = await make_client()

        order = await order_service.create_order(db, OrderCreate(status=OrderStatus.DRAFT), client, notifier)

        assert order.status == OrderStatus.DRAFT
        assert order.final_amount == Decimal("0.00")

    async def test_broken_notifier_does_not_fail_the_order(self, db, make_client, sample_items):
        client = await make_client()

        order = await order_service.create_order(
            db, OrderCreate(menu_items=sample_items), client, FailingNotifier(),
        )

        assert order.id is not None


class TestUpdateOrder:

    async def test_reprice_keeps_omitted_discounts(self, db, make_client, make_order, notifier):
        client = await make_client()
        order = await make_order(client, discount_fixed=5, discount_percent=10, delivery_cost=3)
        order_id = order.id

        updated = await order_service.update_order(
            db, order_id, OrderUpdate(delivery_cost=Decimal("10")), notifier,
        )

        assert updated.discount_fixed == Decimal("5.00")
        assert updated.discount_percent == Decimal("10.00")
        assert updated.final_amount == Decimal("40.10")

    async def test_prices_locked_after_payment_started(self, db, make_client, make_order, notifier):
        client = await make_client()
        order = await make_order(client, status=OrderStatus.PENDING_PAYMENT)
        order_id = order.id

        with pytest.raises(DomainStateError):
            await order_service.update_order(db, order_id, OrderUpdate(discount_fixed=Decimal("1")), notifier)

        reloaded = await order_service.load_order(db, order_id)
        assert reloaded.discount_fixed == Decimal("0.00")

    async def test_logistics_editable_while_paid(self, db, make_client, make_order, notifier):
        client = await make_client()
        order = await make_order(client, status=OrderStatus.PAID)

        updated = await order_service.update_order(
            db, order.id, OrderUpdate(delivery_address="Main St 1", delivery_type=DeliveryType.PICKUP), notifier,
        )

        assert updated.delivery_address == "Main St 1"
        assert updated.delivery_type == DeliveryType.PICKUP

    async def test_status_in_patch_is_validated(self, db, make_client, make_order, notifier):
        client = await make_client()
        order = await make_order(client, status=OrderStatus.SUBMITTED)
        order_id = order.id

        with pytest.raises(DomainStateError):
            await order_service.update_order(
                db, order_id, OrderUpdate(comment="skip", status=OrderStatus.PAID), notifier,
            )

        reloaded = await order_service.load_order(db, order_id)
        assert reloaded.status == OrderStatus.SUBMITTED
        assert reloaded.comment is None

    async def test_terminal_order_rejects_update(self, db, make_client, make_order, notifier):
        client = await make_client()
        order = await make_order(client, status=OrderStatus.CANCELLED)

        with pytest.raises(DomainStateError):
            await order_service.update_order(db, order.id, OrderUpdate(comment="late"), notifier)

    async def test_version_bumped_on_write(self, db, make_client, make_order, notifier):
        client = await make_client()
        order = await make_order(client)
        assert order.version_id == 1

        updated = await order_service.update_order(db, order.id, OrderUpdate(comment="call first"), notifier)

        assert updated.version_id == 2


class TestUpdateOrderStatus:

    async def test_cancel_notifies(self, db, make_client, make_order, notifier):
        client = await make_client()
        order = await make_order(client, status=OrderStatus.SUBMITTED)

        updated = await order_service.update_order_status(db, order.id, OrderStatus.CANCELLED, "client call", notifier)

        assert updated.status == OrderStatus.CANCELLED
        assert updated.comment == "client call"
        event, payload = notifier.events[-1]
        assert event == ORDER_STATUS_CHANGED
        assert payload["previous_status"] == "submitted"
        assert payload["status"] == "cancelled"

    async def test_invoice_approval_for_corporate(self, db, make_client, make_order, notifier):
        client = await make_client("corp@example.com", category=ClientCategory.CORPORATE)
        order = await make_order(client, status=OrderStatus.SUBMITTED)

        updated = await order_service.update_order_status(db, order.id, OrderStatus.PROCESSING, None, notifier)

        assert updated.status == OrderStatus.PROCESSING

    async def test_non_corporate_cannot_skip_payment(self, db, make_client, make_order, notifier):
        client = await make_client()
        order = await make_order(client, status=OrderStatus.SUBMITTED)

        with pytest.raises(DomainStateError):
            await order_service.update_order_status(db, order.id, OrderStatus.PROCESSING, None, notifier)

    async def test_same_status_rejected(self, db, make_client, make_order, notifier):
        client = await make_client()
        order = await make_order(client, status=OrderStatus.PAID)

        with pytest.raises(DomainStateError):
            await order_service.update_order_status(db, order.id, OrderStatus.PAID, None, notifier)

    async def test_missing_order(self, db, notifier):
        with pytest.raises(NotFoundError):
            await order_service.update_order_status(db, 404, OrderStatus.CANCELLED, None, notifier)


class TestReads:

    async def test_client_sees_only_own_orders(self, db, make_staff, make_client, make_order):
        staff = await make_staff()
        alice = await make_client("alice@example.com")
        bob = await make_client("bob@example.com")
        await make_order(alice)
        await make_order(bob)
        await make_order(bob, status=OrderStatus.PAID)

        assert len(await order_service.list_orders(db, alice)) == 1
        assert len(await order_service.list_orders(db, bob)) == 2
        assert len(await order_service.list_orders(db, staff)) == 3
        paid = await order_service.list_orders(db, staff, status=OrderStatus.PAID)
        assert [o.client_id for o in paid] == [bob.id]

    async def test_statistics_skip_cancelled_amounts(self, db, make_staff, make_client, make_order):
        staff = await make_staff()
        client = await make_client()
        await make_order(client)
        await make_order(client, status=OrderStatus.PAID)
        await make_order(client, status=OrderStatus.CANCELLED)

        stats = await order_service.order_statistics(db, staff)

        assert stats.total == 3
        assert stats.by_status["cancelled"] == 1
        assert stats.by_status["draft"] == 0
        assert stats.total_amount == Decimal("78.00")


class TestOptimisticLocking:

    async def test_stale_write_detected(self, db, make_client, make_order):
        client = await make_client()
        order = await make_order(client)

        # another writer commits first
        await db.execute(
            update(Order)
            .where(Order.id == order.id)
            .values(version_id=Order.version_id + 1)
            .execution_options(synchronize_session=False)
        )
        order.comment = "mine"

        with pytest.raises(StaleDataError):
            await db.flush()
        await db.rollback()

    async def test_retry_reruns_from_fresh_read(self, db):
        calls = []

        @with_optimistic_retry("test_operation")
        async def flaky(session):
            calls.append(1)
            if len(calls) == 1:
                raise StaleDataError("conflict")
            return "done"

        assert await flaky(db) == "done"
        assert len(calls) == 2

    async def test_retry_gives_up(self, db):
        @with_optimistic_retry("test_operation", max_retries=2)
        async def always_stale(session):
            raise StaleDataError("conflict")

        with pytest.raises(PersistenceError):
            await always_stale(db)
