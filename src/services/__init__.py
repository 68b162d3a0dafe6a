"""
Services package - Reservation business logic and external integrations.
"""
from .assignment import TableAssignment, TableCandidate, select_tables
from .overlap_index import busy_table_ids, overlaps
from .expiry import ExpirySweeper, is_blocking, sweep_expired_holds
from .payment_gateway import PaymentEvent, PaymentGateway, PaymentIntent, StripeGateway
from .hold_ledger import HoldLedger
from .confirmation import ConfirmationProcessor, generate_reservation_number

__all__ = [
    "TableAssignment",
    "TableCandidate",
    "select_tables",
    "busy_table_ids",
    "overlaps",
    "ExpirySweeper",
    "is_blocking",
    "sweep_expired_holds",
    "PaymentEvent",
    "PaymentGateway",
    "PaymentIntent",
    "StripeGateway",
    "HoldLedger",
    "ConfirmationProcessor",
    "generate_reservation_number",
]
