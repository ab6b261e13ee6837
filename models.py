from flask_sqlalchemy import SQLAlchemy
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


db = SQLAlchemy(model_class=Base)
from datetime import datetime
from sqlalchemy import String, Integer, Numeric, DateTime, Boolean, Text, JSON
from sqlalchemy.orm import Mapped, mapped_column
import enum
import uuid


class ProductCategory(enum.Enum):
    FOOD = "food"
    BEVERAGE = "beverage"
    OTHER = "other"


class PaymentMethod(enum.Enum):
    CASH = "cash"
    CARD = "card"
    OTHER = "other"


class FiscalSequence(db.Model):
    """Durable counters for receipt numbers and TSE transaction numbers"""
    __tablename__ = 'fiscal_sequences'

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)  # 'receipt', 'transaction'
    current_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class FiscalReceiptRecord(db.Model):
    """Immutable record of a completed sale (Kassenbeleg) for fiscal compliance"""
    __tablename__ = 'fiscal_receipts'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    receipt_number: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)  # YYYYMMDD-NNNNNN
    transaction_id: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)  # txn-<N>
    timestamp: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    items: Mapped[list] = mapped_column(JSON, nullable=False)
    subtotal_net: Mapped[float] = mapped_column(Numeric(12, 2), nullable=False)
    total_vat: Mapped[float] = mapped_column(Numeric(12, 2), nullable=False)
    total_gross: Mapped[float] = mapped_column(Numeric(12, 2), nullable=False)
    payment_method: Mapped[str] = mapped_column(String(20), nullable=False, default="cash")
    tse_signature: Mapped[str] = mapped_column(String(64), nullable=False)
    fiscal_memory_serial: Mapped[str] = mapped_column(String(50), nullable=False)
    cashier_name: Mapped[str] = mapped_column(String(100), nullable=True)
    cancelled: Mapped[bool] = mapped_column(Boolean, nullable=True, default=False)

    def to_row(self):
        """Persistence shape: timestamp as ISO-8601, amounts as JSON numbers"""
        return {
            'id': self.id,
            'receipt_number': self.receipt_number,
            'transaction_id': self.transaction_id,
            'timestamp': self.timestamp.isoformat(timespec='milliseconds'),
            'items': self.items,
            'subtotal_net': float(self.subtotal_net),
            'total_vat': float(self.total_vat),
            'total_gross': float(self.total_gross),
            'payment_method': self.payment_method,
            'tse_signature': self.tse_signature,
            'fiscal_memory_serial': self.fiscal_memory_serial,
            'cashier_name': self.cashier_name,
            'cancelled': self.cancelled
        }


class SystemConfiguration(db.Model):
    __tablename__ = 'system_configuration'

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    key: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    value: Mapped[str] = mapped_column(Text, nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
