import pytest
from datetime import date, time
from decimal import Decimal
from sqlalchemy.future import select
from app.core.enums import ApplicationStatus, OrderStatus
from app.core.errors import DomainStateError, NotFoundError, ValidationError
from app.core.optimistic_lock import flush_or_raise
from app.core.security import verify_password
from app.models.order import Order
from app.models.user import ClientUser
from app.schemas.application import ApplicationConvert, ApplicationCreate
from app.services import applications, clients, converter
from app.services.clients import EMAIL_TAKEN
from app.services.converter import convert_application
from app.services.notifications import CLIENT_CREATED, ORDER_CREATED


pytestmark = pytest.mark.integration


class TestConvertApplication:

    async def test_creates_client_order_and_approves(self, db, make_staff, make_application, notifier, clock):
        staff = await make_staff()
        application = await make_application(
            cart_items=[{"id": 1, "name": "X", "price": 10, "quantity": 2}],
            event_date=date(2025, 4, 1),
            event_time=time(18, 30),
            event_address="Hall 3",
        )

        result = await convert_application(db, application.id, staff, None, notifier, clock)

        order = result.order
        assert result.client_created is True
        assert order.items_total == Decimal("20.00")
        assert order.status == OrderStatus.SUBMITTED
        assert order.application_id == application.id
        assert order.coordinator_id == staff.id
        assert order.delivery_date == date(2025, 4, 1)
        assert order.delivery_time == time(18, 30)
        assert order.delivery_address == "Hall 3"

        assert result.application.status == ApplicationStatus.APPROVED
        assert result.application.coordinator_id == staff.id
        assert result.application.client_id == order.client_id
        assert result.application.processed_at == clock.now()

        assert notifier.names() == [CLIENT_CREATED, ORDER_CREATED]
        _, payload = notifier.events[0]
        client = (await db.execute(select(ClientUser).where(ClientUser.id == order.client_id))).scalars().first()
        assert client.email == "guest@example.com"
        assert verify_password(payload["temporary_password"], client.password_hash)

    async def test_reuses_existing_client_by_email(self, db, make_staff, make_client, make_application,
                                                   notifier, clock):
        staff = await make_staff()
        client = await make_client("guest@example.com")
        application = await make_application()

        result = await convert_application(db, application.id, staff, None, notifier, clock)

        assert result.client_created is False
        assert result.order.client_id == client.id
        assert notifier.names() == [ORDER_CREATED]

    async def test_override_client_and_items(self, db, make_staff, make_client, make_application, notifier, clock):
        staff = await make_staff()
        client = await make_client("corp@example.com")
        application = await make_application()
        overrides = ApplicationConvert(
            client_id=client.id,
            menu_items=[{"id": 9, "name": "Buffet", "unit_price": "100.00", "quantity": 1}],
            discount_percent=Decimal("10"),
            delivery_cost=Decimal("15"),
            delivery_address="Office 12",
        )

        result = await convert_application(db, application.id, staff, overrides, notifier, clock)

        assert result.order.client_id == client.id
        assert result.order.final_amount == Decimal("105.00")
        assert result.order.delivery_address == "Office 12"

    async def test_cannot_convert_twice(self, db, make_staff, make_application, notifier, clock):
        staff = await make_staff()
        application = await make_application(status=ApplicationStatus.PROCESSING)
        application_id = application.id
        await convert_application(db, application_id, staff, None, notifier, clock)

        with pytest.raises(DomainStateError):
            await convert_application(db, application_id, staff, None, notifier, clock)

        orders = (await db.execute(select(Order).where(Order.application_id == application_id))).scalars().all()
        assert len(orders) == 1

    async def test_rejected_application(self, db, make_staff, make_application, notifier, clock):
        staff = await make_staff()
        application = await make_application(status=ApplicationStatus.REJECTED)

        with pytest.raises(DomainStateError):
            await convert_application(db, application.id, staff, None, notifier, clock)

    async def test_empty_cart_writes_nothing(self, db, make_staff, make_application, notifier, clock):
        staff = await make_staff()
        application = await make_application(cart_items=[])
        application_id = application.id

        with pytest.raises(ValidationError):
            await convert_application(db, application_id, staff, None, notifier, clock)

        reloaded = await applications.get_application(db, application_id)
        assert reloaded.status == ApplicationStatus.NEW
        assert (await db.execute(select(Order))).scalars().all() == []
        assert (await db.execute(select(ClientUser))).scalars().all() == []

    async def test_unknown_override_client_rolls_back(self, db, make_staff, make_application, notifier, clock):
        staff = await make_staff()
        application = await make_application()
        application_id = application.id

        with pytest.raises(NotFoundError):
            await convert_application(
                db, application_id, staff, ApplicationConvert(client_id=999), notifier, clock,
            )

        reloaded = await applications.get_application(db, application_id)
        assert reloaded.status == ApplicationStatus.NEW
        assert notifier.events == []


class TestApplications:

    async def test_submit_application(self, db):
        payload = ApplicationCreate(
            first_name="Ann",
            email="Ann@Example.com",
            cart_items=[{"id": 1, "name": "X", "price": "12.5", "quantity": 2}],
        )

        application = await applications.submit_application(db, payload)

        assert application.status == ApplicationStatus.NEW
        assert application.email == "ann@example.com"
        assert application.cart_items == [{"id": 1, "name": "X", "unit_price": "12.5", "quantity": 2}]

    async def test_status_flow(self, db, make_staff, make_application, clock):
        staff = await make_staff()
        application = await make_application()
        application_id = application.id

        updated = await applications.update_application_status(
            db, application_id, ApplicationStatus.PROCESSING, "calling back", staff, clock,
        )
        assert updated.status == ApplicationStatus.PROCESSING
        assert updated.coordinator_comment == "calling back"
        assert updated.processed_at is None

        updated = await applications.update_application_status(
            db, application_id, ApplicationStatus.REJECTED, None, staff, clock,
        )
        assert updated.status == ApplicationStatus.REJECTED
        assert updated.processed_at == clock.now()

        with pytest.raises(DomainStateError):
            await applications.update_application_status(
                db, application_id, ApplicationStatus.PROCESSING, None, staff, clock,
            )

    async def test_list_filters_by_status(self, db, make_application):
        await make_application("a@example.com")
        await make_application("b@example.com", status=ApplicationStatus.REJECTED)

        new = await applications.list_applications(db, ApplicationStatus.NEW)

        assert [a.email for a in new] == ["a@example.com"]

    async def test_missing_application(self, db):
        with pytest.raises(NotFoundError):
            await applications.get_application(db, 12345)


class TestConversionConflicts:

    async def test_email_taken_by_staff_login(self, db, make_staff, make_application, notifier, clock):
        staff = await make_staff()
        await make_staff(username="guest@example.com")
        application = await make_application()
        application_id = application.id

        with pytest.raises(DomainStateError) as exc:
            await convert_application(db, application_id, staff, None, notifier, clock)

        assert exc.value.message == EMAIL_TAKEN
        reloaded = await applications.get_application(db, application_id)
        assert reloaded.status == ApplicationStatus.NEW
        assert (await db.execute(select(Order))).scalars().all() == []
        assert notifier.events == []

    async def test_concurrent_conversion_loses_on_unique_order(self, db, make_staff, make_client, make_application,
                                                               make_order, notifier, clock, monkeypatch):
        staff = await make_staff()
        client = await make_client("guest@example.com")
        application = await make_application()
        application_id = application.id
        # the other request committed its order between our check and our insert
        await make_order(client, application_id=application_id)

        async def not_converted_yet(db, application_id):
            return None

        monkeypatch.setattr(converter, "_existing_order_id", not_converted_yet)

        with pytest.raises(DomainStateError) as exc:
            await convert_application(db, application_id, staff, None, notifier, clock)

        assert exc.value.message == f"Application {application_id} was already converted"
        reloaded = await applications.get_application(db, application_id)
        assert reloaded.status == ApplicationStatus.NEW
        assert notifier.events == []


class TestClientRegistry:

    async def test_duplicate_login_on_flush_is_a_conflict(self, db):
        db.add(ClientUser(username="dup@example.com", email="first@example.com", name="A", password_hash="x"))
        await db.commit()

        # bypass the username lookup to hit the unique key itself
        db.add(ClientUser(username="dup@example.com", email="second@example.com", name="B", password_hash="x"))
        with pytest.raises(DomainStateError) as exc:
            await flush_or_raise(db, "create_client", EMAIL_TAKEN)

        assert exc.value.message == EMAIL_TAKEN
        rows = (await db.execute(select(ClientUser))).scalars().all()
        assert [c.email for c in rows] == ["first@example.com"]

    async def test_creates_client_with_normalized_email(self, db):
        resolved = await clients.create_client_with_temporary_credential(
            db, email=" New@Example.com ", first_name="New", last_name="Guest",
        )

        assert resolved.created is True
        assert resolved.client.username == "new@example.com"
        assert resolved.client.name == "New Guest"
        assert verify_password(resolved.temporary_password, resolved.client.password_hash)
