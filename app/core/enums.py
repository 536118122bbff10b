from enum import Enum


class UserKind(str, Enum):
    STAFF = "staff"
    CLIENT = "client"

    def __str__(self):
        return self.value


class StaffRole(str, Enum):
    ADMIN = "admin"
    COORDINATOR = "coordinator"

    def __str__(self):
        return self.value


class ClientCategory(str, Enum):
    CORPORATE = "corporate"
    ONE_TIME = "one_time"

    def __str__(self):
        return self.value


class OrderStatus(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    PENDING_PAYMENT = "pending_payment"
    PAID = "paid"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    def __str__(self):
        return self.value

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.COMPLETED, OrderStatus.CANCELLED)


class PaymentStatus(str, Enum):
    NONE = "none"
    PENDING = "pending"
    AUTHORIZED = "authorized"
    CHARGED = "charged"
    FAILED = "failed"

    def __str__(self):
        return self.value


class ApplicationStatus(str, Enum):
    NEW = "new"
    PROCESSING = "processing"
    APPROVED = "approved"
    REJECTED = "rejected"

    def __str__(self):
        return self.value


class DeliveryType(str, Enum):
    DELIVERY = "delivery"
    PICKUP = "pickup"
    BUFFET = "buffet"

    def __str__(self):
        return self.value


class TransitionTrigger(str, Enum):
    SUBMIT = "submit"
    PAYMENT_SESSION = "payment_session"
    INVOICE_APPROVAL = "invoice_approval"
    PAYMENT_CHARGED = "payment_charged"
    SCHEDULER = "scheduler"
    MANUAL = "manual"
    CANCEL = "cancel"

    def __str__(self):
        return self.value


class CallbackOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"

    def __str__(self):
        return self.value


class AuditAction(str, Enum):
    CREATE_ORDER = "create_order"
    UPDATE_ORDER = "update_order"
    UPDATE_ORDER_STATUS = "update_order_status"
    CREATE_PAYMENT = "create_payment"
    PAYMENT_CALLBACK = "payment_callback"
    RUN_SWEEP = "run_sweep"
    CREATE_APPLICATION = "create_application"
    UPDATE_APPLICATION_STATUS = "update_application_status"
    CONVERT_APPLICATION = "convert_application"
    LOGIN = "login"

    def __str__(self):
        return self.value
