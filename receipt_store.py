"""
Persistence of fiscal receipts (table fiscal_receipts)

Receipts are written once and only read afterwards. Row <-> receipt
conversion lives here so every reader goes through the same
deserialization.
"""
import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from models import db, FiscalReceiptRecord, FiscalSequence
from fiscal_errors import StoreReadError, StoreWriteError
from german_compliance import FiscalReceipt, FiscalReceiptItem, to_amount

logger = logging.getLogger(__name__)


def _parse_items(raw_items: Any) -> List[Dict[str, Any]]:
    # The items column may come back as a JSON string or as parsed data
    if isinstance(raw_items, (str, bytes)):
        raw_items = json.loads(raw_items)
    return list(raw_items or [])


def _parse_timestamp(raw_timestamp: Any) -> datetime:
    if isinstance(raw_timestamp, datetime):
        return raw_timestamp
    return datetime.fromisoformat(str(raw_timestamp).replace('Z', '+00:00'))


def receipt_from_row(row: Dict[str, Any]) -> FiscalReceipt:
    """Rebuild a FiscalReceipt from its persistence shape"""
    return FiscalReceipt(
        id=row['id'],
        receipt_number=row['receipt_number'],
        transaction_id=row['transaction_id'],
        timestamp=_parse_timestamp(row['timestamp']),
        items=[FiscalReceiptItem.from_dict(item) for item in _parse_items(row['items'])],
        subtotal_net=to_amount(row['subtotal_net'], 'subtotal_net'),
        total_vat=to_amount(row['total_vat'], 'total_vat'),
        total_gross=to_amount(row['total_gross'], 'total_gross'),
        payment_method=row['payment_method'],
        tse_signature=row['tse_signature'],
        fiscal_memory_serial=row['fiscal_memory_serial'],
        cashier_name=row.get('cashier_name'),
        cancelled=bool(row.get('cancelled') or False)
    )


def receipt_to_row(receipt: FiscalReceipt) -> Dict[str, Any]:
    """Persistence shape of a receipt (also used as its JSON representation)"""
    return {
        'id': receipt.id,
        'receipt_number': receipt.receipt_number,
        'transaction_id': receipt.transaction_id,
        'timestamp': receipt.timestamp.isoformat(timespec='milliseconds'),
        'items': [item.to_dict() for item in receipt.items],
        'subtotal_net': float(receipt.subtotal_net),
        'total_vat': float(receipt.total_vat),
        'total_gross': float(receipt.total_gross),
        'payment_method': receipt.payment_method,
        'tse_signature': receipt.tse_signature,
        'fiscal_memory_serial': receipt.fiscal_memory_serial,
        'cashier_name': receipt.cashier_name,
        'cancelled': receipt.cancelled
    }


class ReceiptStore:
    """Fiscal receipt repository on top of the Flask-SQLAlchemy session"""

    def __init__(self, session=None):
        self.session = session or db.session

    def save(self, receipt: FiscalReceipt) -> None:
        record = FiscalReceiptRecord(
            id=receipt.id,
            receipt_number=receipt.receipt_number,
            transaction_id=receipt.transaction_id,
            timestamp=receipt.timestamp,
            items=[item.to_dict() for item in receipt.items],
            subtotal_net=receipt.subtotal_net,
            total_vat=receipt.total_vat,
            total_gross=receipt.total_gross,
            payment_method=receipt.payment_method,
            tse_signature=receipt.tse_signature,
            fiscal_memory_serial=receipt.fiscal_memory_serial,
            cashier_name=receipt.cashier_name,
            cancelled=receipt.cancelled
        )
        try:
            self.session.add(record)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Error saving fiscal receipt {receipt.receipt_number}: {str(e)}")
            raise StoreWriteError(f'Beleg {receipt.receipt_number} konnte nicht gespeichert werden: {str(e)}') from e

    def _fetch(self, query) -> List[FiscalReceipt]:
        try:
            records = query.all()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Error reading fiscal receipts: {str(e)}")
            raise StoreReadError(f'Belege konnten nicht gelesen werden: {str(e)}') from e
        return [receipt_from_row(record.to_row()) for record in records]

    def list_all(self) -> List[FiscalReceipt]:
        """All receipts, newest first"""
        query = self.session.query(FiscalReceiptRecord).order_by(FiscalReceiptRecord.timestamp.desc())
        return self._fetch(query)

    def list_by_date_range(self, start: datetime, end: datetime) -> List[FiscalReceipt]:
        """Receipts with start <= timestamp <= end, oldest first"""
        return self.list_filtered(start=start, end=end)

    def list_filtered(self, start: Optional[datetime] = None, end: Optional[datetime] = None,
                      payment_method: Optional[str] = None) -> List[FiscalReceipt]:
        query = self.session.query(FiscalReceiptRecord)
        if start is not None:
            query = query.filter(FiscalReceiptRecord.timestamp >= start)
        if end is not None:
            query = query.filter(FiscalReceiptRecord.timestamp <= end)
        if payment_method:
            query = query.filter(FiscalReceiptRecord.payment_method == payment_method)
        return self._fetch(query.order_by(FiscalReceiptRecord.timestamp.asc()))

    def get_by_receipt_number(self, receipt_number: str) -> Optional[FiscalReceipt]:
        query = self.session.query(FiscalReceiptRecord).filter_by(receipt_number=receipt_number)
        receipts = self._fetch(query)
        return receipts[0] if receipts else None


class DatabaseSequence:
    """
    Counters kept in fiscal_sequences

    The row is locked (SELECT ... FOR UPDATE) and incremented inside the
    current transaction; the increment is committed together with the
    receipt by ReceiptStore.save, or rolled back with it.
    """

    def __init__(self, session=None):
        self.session = session or db.session

    def next_value(self, name: str) -> int:
        try:
            sequence = self.session.query(FiscalSequence).filter_by(name=name).with_for_update().first()
            if sequence is None:
                sequence = FiscalSequence(name=name, current_number=1)
                self.session.add(sequence)

            value = sequence.current_number
            sequence.current_number = value + 1
            self.session.flush()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Error advancing fiscal sequence {name}: {str(e)}")
            raise StoreWriteError(f'Sequenz {name} konnte nicht fortgeschrieben werden: {str(e)}') from e

        return value
