"""
German fiscal compliance (KassenSichV) for the restaurant POS

VAT (MwSt) split per line item, receipt numbering, simulated TSE signature,
fiscal receipt assembly and daily/range reporting.

The TSE here is a simulation: signatures are random tokens, not certified
cryptographic attestations.
"""
import logging
import secrets
import string
import threading
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Any, Callable, Dict, List, Optional

from models import ProductCategory, PaymentMethod
from fiscal_errors import InvalidCategory, InvalidOrder, StoreWriteError, ReceiptPersistenceFailed

logger = logging.getLogger(__name__)

CENT = Decimal('0.01')
ZERO = Decimal('0.00')

DEFAULT_FISCAL_MEMORY_SERIAL = 'TSE-SIM-2024-001'
DEFAULT_CASHIER_NAME = 'System'
SIGNATURE_LENGTH = 32
SIGNATURE_ALPHABET = string.ascii_letters + string.digits

# Largest amount the Numeric(12, 2) columns hold
MAX_AMOUNT = Decimal('9999999999.99')

VAT_RATES = {
    'standard': Decimal('0.19'),  # 19% Regelsteuersatz
    'reduced': Decimal('0.07'),   # 7% ermäßigt (Speisen)
    'zero': Decimal('0.00'),      # 0% - currently not assigned to any category
}


def round_cents(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_amount(value: Any, field_name: str = 'price') -> Decimal:
    """Convert a numeric input (int, float, str, Decimal) to a Decimal amount"""
    if isinstance(value, bool):
        raise InvalidOrder(f'{field_name} muss eine Zahl sein, erhalten: {value!r}', field=field_name)
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidOrder(f'{field_name} muss eine Zahl sein, erhalten: {value!r}', field=field_name)
    if not amount.is_finite():
        raise InvalidOrder(f'{field_name} muss eine endliche Zahl sein', field=field_name)
    if abs(amount) > MAX_AMOUNT:
        raise InvalidOrder(f'{field_name}: Betrag zu groß (max. {MAX_AMOUNT})', field=field_name)
    return amount


def vat_rate_label(rate: Decimal) -> str:
    """'19%' / '7%' key used in the VAT breakdown"""
    return f"{rate * 100:.0f}%"


def _parse_category(category: Any) -> ProductCategory:
    if isinstance(category, ProductCategory):
        return category
    try:
        return ProductCategory(category)
    except ValueError:
        raise InvalidCategory(category)


@dataclass(frozen=True)
class VatBreakdown:
    net: Decimal
    vat: Decimal
    gross: Decimal
    vat_rate: Decimal


def calculate_vat(price: Any, category: Any = ProductCategory.FOOD) -> VatBreakdown:
    """
    Split a gross (VAT-inclusive) unit price into net and VAT

    Speisen use the reduced rate, beverages and everything else the
    standard rate. VAT is derived from the rounded gross and net, so
    net + vat == gross holds exactly.

    Raises:
        InvalidCategory: category is not food, beverage or other
        InvalidOrder: price is not a non-negative number
    """
    product_category = _parse_category(category)
    vat_rate = VAT_RATES['reduced'] if product_category is ProductCategory.FOOD else VAT_RATES['standard']

    gross = round_cents(to_amount(price))
    if gross < 0:
        raise InvalidOrder(f'Preis darf nicht negativ sein: {gross}', field='price')

    net = round_cents(gross / (1 + vat_rate))
    vat = gross - net

    return VatBreakdown(net=net, vat=vat, gross=gross, vat_rate=vat_rate)


@dataclass
class FiscalReceiptItem:
    name: str
    quantity: int
    unit_price: Decimal
    vat_rate: Decimal
    total_net: Decimal
    total_vat: Decimal
    total_gross: Decimal

    def to_dict(self) -> Dict[str, Any]:
        # Key names of the items JSON column
        return {
            'name': self.name,
            'quantity': self.quantity,
            'unitPrice': float(self.unit_price),
            'vatRate': float(self.vat_rate),
            'totalNet': float(self.total_net),
            'totalVat': float(self.total_vat),
            'totalGross': float(self.total_gross)
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FiscalReceiptItem':
        return cls(
            name=data['name'],
            quantity=int(data['quantity']),
            unit_price=to_amount(data['unitPrice'], 'unitPrice'),
            vat_rate=to_amount(data['vatRate'], 'vatRate'),
            total_net=to_amount(data['totalNet'], 'totalNet'),
            total_vat=to_amount(data['totalVat'], 'totalVat'),
            total_gross=to_amount(data['totalGross'], 'totalGross')
        )


@dataclass
class FiscalReceipt:
    id: str
    receipt_number: str
    transaction_id: str
    timestamp: datetime
    items: List[FiscalReceiptItem]
    subtotal_net: Decimal
    total_vat: Decimal
    total_gross: Decimal
    payment_method: str
    tse_signature: str
    fiscal_memory_serial: str
    cashier_name: Optional[str] = None
    cancelled: bool = False


@dataclass(frozen=True)
class TSEData:
    serial_number: str
    transaction_number: int
    start_time: datetime
    finish_time: datetime
    signature: str


@dataclass
class DailyReport:
    total_sales: Decimal = ZERO
    total_vat: Decimal = ZERO
    transaction_count: int = 0
    vat_breakdown: Dict[str, Dict[str, Decimal]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total_sales': float(self.total_sales),
            'total_vat': float(self.total_vat),
            'transaction_count': self.transaction_count,
            'vat_breakdown': {
                label: {key: float(amount) for key, amount in bucket.items()}
                for label, bucket in self.vat_breakdown.items()
            }
        }


class InMemorySequence:
    """Process-lifetime counters starting at 1, safe for concurrent callers"""

    def __init__(self, start: int = 1):
        self._start = start
        self._counters: Dict[str, int] = {}
        self._lock = threading.Lock()

    def next_value(self, name: str) -> int:
        with self._lock:
            value = self._counters.get(name, self._start)
            self._counters[name] = value + 1
            return value


class SimulatedTSESigner:
    """Stand-in for a certified TSE: returns a random alphanumeric token"""

    def __init__(self, length: int = SIGNATURE_LENGTH):
        self.length = length

    def sign(self, transaction_data: Dict[str, Any]) -> str:
        return ''.join(secrets.choice(SIGNATURE_ALPHABET) for _ in range(self.length))


class FiscalIdGenerator:
    """
    Receipt numbers (YYYYMMDD-NNNNNN) and TSE transaction data

    Counters come from a sequence object exposing next_value(name); the
    web app passes a database-backed sequence so numbers stay unique
    across restarts and workers.
    """

    RECEIPT_SEQUENCE = 'receipt'
    TRANSACTION_SEQUENCE = 'transaction'

    def __init__(self, sequence=None, signer=None,
                 fiscal_memory_serial: str = DEFAULT_FISCAL_MEMORY_SERIAL,
                 clock: Callable[[], datetime] = datetime.now):
        self.sequence = sequence or InMemorySequence()
        self.signer = signer or SimulatedTSESigner()
        self.fiscal_memory_serial = fiscal_memory_serial
        self.clock = clock

    def next_receipt_number(self, now: Optional[datetime] = None) -> str:
        now = now or self.clock()
        counter = self.sequence.next_value(self.RECEIPT_SEQUENCE)
        return f"{now.strftime('%Y%m%d')}-{counter:06d}"

    def next_tse_signature(self, now: Optional[datetime] = None) -> TSEData:
        start_time = now or self.clock()
        transaction_number = self.sequence.next_value(self.TRANSACTION_SEQUENCE)
        signature = self.signer.sign({
            'serial_number': self.fiscal_memory_serial,
            'transaction_number': transaction_number,
            'start_time': start_time.isoformat()
        })
        return TSEData(
            serial_number=self.fiscal_memory_serial,
            transaction_number=transaction_number,
            start_time=start_time,
            finish_time=start_time + timedelta(seconds=1),  # fixed synthetic duration
            signature=signature
        )


def _truncate_to_millis(moment: datetime) -> datetime:
    return moment.replace(microsecond=(moment.microsecond // 1000) * 1000)


def day_bounds(start_day: date, end_day: date):
    if isinstance(start_day, datetime):
        start_day = start_day.date()
    if isinstance(end_day, datetime):
        end_day = end_day.date()
    return (datetime.combine(start_day, time.min),
            datetime.combine(end_day, time(23, 59, 59, 999000)))


class GermanComplianceService:
    """Builds, stores and reports on German fiscal receipts"""

    def __init__(self, store, id_generator: Optional[FiscalIdGenerator] = None,
                 clock: Callable[[], datetime] = datetime.now):
        self.store = store
        self.id_generator = id_generator or FiscalIdGenerator(clock=clock)
        self.clock = clock

    @property
    def fiscal_memory_serial(self) -> str:
        return self.id_generator.fiscal_memory_serial

    def calculate_vat(self, price: Any, category: Any = ProductCategory.FOOD) -> VatBreakdown:
        return calculate_vat(price, category)

    def _build_item(self, item: Dict[str, Any], position: int) -> FiscalReceiptItem:
        if not isinstance(item, dict):
            raise InvalidOrder(f'Position {position}: ungültiges Format', field='items')

        name = item.get('name')
        if not name or not str(name).strip():
            raise InvalidOrder(f'Position {position}: Name fehlt', field='name')

        quantity = item.get('quantity')
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise InvalidOrder(f'Position {position}: Menge muss eine positive ganze Zahl sein', field='quantity')

        if item.get('price') is None:
            raise InvalidOrder(f'Position {position}: Preis fehlt', field='price')

        breakdown = calculate_vat(item['price'], item.get('category') or ProductCategory.FOOD)
        if breakdown.gross * quantity > MAX_AMOUNT:
            raise InvalidOrder(f'Position {position}: Betrag zu groß (max. {MAX_AMOUNT})', field='quantity')
        return FiscalReceiptItem(
            name=str(name).strip(),
            quantity=quantity,
            unit_price=breakdown.gross,
            vat_rate=breakdown.vat_rate,
            total_net=round_cents(breakdown.net * quantity),
            total_vat=round_cents(breakdown.vat * quantity),
            total_gross=round_cents(breakdown.gross * quantity)
        )

    def create_fiscal_receipt(self, order: Dict[str, Any]) -> FiscalReceipt:
        """
        Build a fiscal receipt from a finalized order and persist it

        Args:
            order: {'items': [{'name', 'quantity', 'price', 'category'?}],
                    'cashier_name'?, 'payment_method'?}

        Returns:
            The stored FiscalReceipt

        Raises:
            InvalidOrder / InvalidCategory: the order cannot be receipted
            ReceiptPersistenceFailed: the receipt could not be saved; the
                failed receipt is attached as .receipt
        """
        raw_items = order.get('items') if isinstance(order, dict) else None
        if not raw_items or not isinstance(raw_items, list):
            raise InvalidOrder('Ein Beleg braucht mindestens eine Position', field='items')

        payment_method = order.get('payment_method') or PaymentMethod.CASH.value
        try:
            payment_method = PaymentMethod(payment_method).value
        except ValueError:
            raise InvalidOrder(f'Ungültige Zahlungsart: {payment_method!r}', field='payment_method')

        # Validate every line before consuming receipt/transaction numbers
        fiscal_items = [self._build_item(item, position) for position, item in enumerate(raw_items, start=1)]
        if sum((item.total_gross for item in fiscal_items), ZERO) > MAX_AMOUNT:
            raise InvalidOrder(f'Belegsumme zu groß (max. {MAX_AMOUNT})', field='items')

        # One clock reading for the receipt number date, TSE start and timestamp
        now = _truncate_to_millis(self.clock())
        tse_data = self.id_generator.next_tse_signature(now)
        receipt_number = self.id_generator.next_receipt_number(now)

        receipt = FiscalReceipt(
            id=str(uuid.uuid4()),
            receipt_number=receipt_number,
            transaction_id=f"txn-{tse_data.transaction_number}",
            timestamp=now,
            items=fiscal_items,
            subtotal_net=round_cents(sum((item.total_net for item in fiscal_items), ZERO)),
            total_vat=round_cents(sum((item.total_vat for item in fiscal_items), ZERO)),
            total_gross=round_cents(sum((item.total_gross for item in fiscal_items), ZERO)),
            payment_method=payment_method,
            tse_signature=tse_data.signature,
            fiscal_memory_serial=tse_data.serial_number,
            cashier_name=order.get('cashier_name') or DEFAULT_CASHIER_NAME
        )

        try:
            self.store.save(receipt)
        except StoreWriteError as e:
            logger.error(f"Beleg {receipt.receipt_number} konnte nicht gespeichert werden: {e}")
            raise ReceiptPersistenceFailed(
                f'Beleg {receipt.receipt_number} konnte nicht gespeichert werden', receipt=receipt
            ) from e

        logger.info(
            f"Fiscal receipt {receipt.receipt_number} created "
            f"({receipt.transaction_id}, {len(fiscal_items)} items, gross {receipt.total_gross})"
        )
        return receipt

    def get_stored_receipts(self) -> List[FiscalReceipt]:
        return self.store.list_all()

    def generate_daily_report(self, day: date) -> DailyReport:
        return self.generate_range_report(day, day)

    def generate_range_report(self, start_day: date, end_day: date) -> DailyReport:
        """
        Aggregate non-cancelled receipts between two local days (inclusive)

        Totals are summed unrounded and rounded once at the end; the VAT
        breakdown buckets are rounded for presentation only.
        """
        window_start, window_end = day_bounds(start_day, end_day)
        receipts = self.store.list_by_date_range(window_start, window_end)

        included = [
            receipt for receipt in receipts
            if window_start <= receipt.timestamp <= window_end and not receipt.cancelled
        ]

        breakdown: Dict[str, Dict[str, Decimal]] = {}
        for receipt in included:
            for item in receipt.items:
                bucket = breakdown.setdefault(vat_rate_label(item.vat_rate), {'net': ZERO, 'vat': ZERO, 'gross': ZERO})
                bucket['net'] += item.total_net
                bucket['vat'] += item.total_vat
                bucket['gross'] += item.total_gross

        return DailyReport(
            total_sales=round_cents(sum((r.total_gross for r in included), ZERO)),
            total_vat=round_cents(sum((r.total_vat for r in included), ZERO)),
            transaction_count=len(included),
            vat_breakdown={
                label: {key: round_cents(amount) for key, amount in bucket.items()}
                for label, bucket in breakdown.items()
            }
        )
