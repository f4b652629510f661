from stayledger.models.employee import Employee
from stayledger.models.customer import Customer
from stayledger.models.customer_tier import CustomerTier
from stayledger.models.room_type import RoomType
from stayledger.models.room import Room
from stayledger.models.booking import Booking
from stayledger.models.booking_room import BookingRoom
from stayledger.models.booking_guest import BookingGuest
from stayledger.models.stay_record import StayRecord
from stayledger.models.stay_detail import StayDetail
from stayledger.models.inspection import Inspection
from stayledger.models.guest_folio import GuestFolio
from stayledger.models.hotel_service import HotelService
from stayledger.models.service_usage import ServiceUsage
from stayledger.models.transaction import Transaction
from stayledger.models.transaction_detail import TransactionDetail
from stayledger.models.promotion import Promotion
from stayledger.models.customer_promotion import CustomerPromotion
from stayledger.models.invoice import Invoice
from stayledger.models.invoice_line import InvoiceLine
from stayledger.models.activity import Activity

__all__ = [
    "Employee", "Customer", "CustomerTier", "RoomType", "Room", "Booking", "BookingRoom",
    "BookingGuest", "StayRecord", "StayDetail", "Inspection", "GuestFolio", "HotelService",
    "ServiceUsage", "Transaction", "TransactionDetail", "Promotion", "CustomerPromotion",
    "Invoice", "InvoiceLine", "Activity",
]
