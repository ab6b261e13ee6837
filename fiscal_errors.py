"""
Exceptions for the German fiscal receipt subsystem
"""
from typing import Any, Optional


class FiscalError(Exception):
    """Base exception for fiscal receipt errors"""
    pass


class InvalidCategory(FiscalError, ValueError):
    """Unknown product category passed to the VAT calculation"""

    def __init__(self, category: Any):
        super().__init__(f"Unbekannte Produktkategorie: {category!r}")
        self.category = category


class InvalidOrder(FiscalError, ValueError):
    """Order data cannot be turned into a fiscal receipt"""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class StoreError(FiscalError):
    """Failure at the receipt persistence boundary"""
    pass


class StoreWriteError(StoreError):
    pass


class StoreReadError(StoreError):
    pass


class ReceiptPersistenceFailed(StoreWriteError):
    """A receipt was built but could not be saved durably"""

    def __init__(self, message: str, receipt: Any = None):
        super().__init__(message)
        self.receipt = receipt
