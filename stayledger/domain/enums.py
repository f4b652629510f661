from enum import Enum


class EmployeeRole(str, Enum):
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    RECEPTIONIST = "RECEPTIONIST"
    HOUSEKEEPER = "HOUSEKEEPER"


class RoomStatus(str, Enum):
    AVAILABLE = "AVAILABLE"
    OCCUPIED = "OCCUPIED"
    MAINTENANCE = "MAINTENANCE"


class BookingStatus(str, Enum):
    PENDING = "PENDING"          # held until hold_expires_at, waiting for deposit
    CONFIRMED = "CONFIRMED"      # deposit received
    CHECKED_IN = "CHECKED_IN"    # every live room checked in
    CHECKED_OUT = "CHECKED_OUT"  # every live room checked out
    CANCELLED = "CANCELLED"


class BookingRoomState(str, Enum):
    RESERVED = "RESERVED"
    CHECKED_IN = "CHECKED_IN"
    IN_STAY = "IN_STAY"
    INSPECTION_PENDING = "INSPECTION_PENDING"
    INSPECTED = "INSPECTED"
    CHECKED_OUT = "CHECKED_OUT"
    CANCELLED = "CANCELLED"


class StayStatus(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class FolioStatus(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class ServiceUsageStatus(str, Enum):
    PENDING = "PENDING"
    TRANSFERRED = "TRANSFERRED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class TransactionType(str, Enum):
    DEPOSIT = "DEPOSIT"
    ROOM_CHARGE = "ROOM_CHARGE"
    SERVICE_CHARGE = "SERVICE_CHARGE"
    REFUND = "REFUND"
    ADJUSTMENT = "ADJUSTMENT"


# REFUND/ADJUSTMENT carry an explicit signed amount and never take a discount
SIGNED_TRANSACTION_TYPES = frozenset({TransactionType.REFUND, TransactionType.ADJUSTMENT})


class PaymentMethod(str, Enum):
    CASH = "CASH"
    CARD = "CARD"
    BANK_TRANSFER = "BANK_TRANSFER"
    E_WALLET = "E_WALLET"


class PromotionType(str, Enum):
    PERCENTAGE = "PERCENTAGE"
    FIXED_AMOUNT = "FIXED_AMOUNT"


class PromotionScope(str, Enum):
    ALL = "ALL"
    ROOM = "ROOM"
    SERVICE = "SERVICE"


class CustomerPromotionStatus(str, Enum):
    AVAILABLE = "AVAILABLE"  # claimed, quota already consumed
    USED = "USED"
    EXPIRED = "EXPIRED"


class ActivityType(str, Enum):
    CREATE_BOOKING = "CREATE_BOOKING"
    CANCEL_BOOKING = "CANCEL_BOOKING"
    RESERVE_ROOM = "RESERVE_ROOM"
    CHECK_IN = "CHECK_IN"
    START_STAY = "START_STAY"
    REQUEST_CHECKOUT = "REQUEST_CHECKOUT"
    RECORD_INSPECTION = "RECORD_INSPECTION"
    APPROVE_INSPECTION = "APPROVE_INSPECTION"
    CHECK_OUT = "CHECK_OUT"
    CREATE_SERVICE_USAGE = "CREATE_SERVICE_USAGE"
    UPDATE_SERVICE_USAGE = "UPDATE_SERVICE_USAGE"
    CREATE_TRANSACTION = "CREATE_TRANSACTION"
    CREATE_PROMOTION = "CREATE_PROMOTION"
    UPDATE_PROMOTION = "UPDATE_PROMOTION"
    DISABLE_PROMOTION = "DISABLE_PROMOTION"
    CLAIM_PROMOTION = "CLAIM_PROMOTION"
    REDEEM_PROMOTION = "REDEEM_PROMOTION"
    CREATE_INVOICE = "CREATE_INVOICE"
    VOID_INVOICE = "VOID_INVOICE"
    UPGRADE_TIER = "UPGRADE_TIER"
