from src.models.event import Event
from src.models.ticket_type import TicketType
from src.models.order import Order
from src.models.ticket import Ticket
from src.models.wristband import Wristband
from src.models.scan_log import ScanLog

__all__ = ["Event", "TicketType", "Order", "Ticket", "Wristband", "ScanLog"]
