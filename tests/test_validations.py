"""
Tests para funciones de validación en utils.py
Testing de USt-IdNr, parámetros de fecha y formato de moneda
"""
from datetime import date

import pytest
from utils import (
    validate_vat_id,
    parse_date_param,
    format_currency_eur,
    generate_error_id
)


class TestValidateVatId:
    """Tests para validación de USt-IdNr (DE + 9 dígitos)"""

    def test_empty_vat_id(self):
        """USt-IdNr vacía debe ser válida (es opcional)"""
        result = validate_vat_id('')
        assert result['valid'] is True
        assert result['formatted'] == ''

    def test_none_vat_id(self):
        result = validate_vat_id(None)
        assert result['valid'] is True

    def test_valid_vat_id(self):
        result = validate_vat_id('DE123456789')
        assert result['valid'] is True
        assert result['formatted'] == 'DE123456789'

    def test_valid_vat_id_with_formatting(self):
        """USt-IdNr con espacios, puntos y minúsculas debe ser limpiada"""
        result = validate_vat_id('de 123.456-789')
        assert result['valid'] is True
        assert result['formatted'] == 'DE123456789'

    @pytest.mark.parametrize('vat_id', ['DE12345678', 'DE1234567890', 'AT123456789', '123456789', 'DEABCDEFGHI'])
    def test_invalid_vat_id(self, vat_id):
        result = validate_vat_id(vat_id)
        assert result['valid'] is False
        assert 'DE123456789' in result['message']


class TestParseDateParam:
    """Tests para parámetros de fecha YYYY-MM-DD"""

    def test_missing_date(self):
        result = parse_date_param(None)
        assert result['valid'] is True
        assert result['value'] is None

    def test_valid_date(self):
        result = parse_date_param('2024-06-01')
        assert result['valid'] is True
        assert result['value'] == date(2024, 6, 1)

    def test_datetime_string_uses_date_part(self):
        assert parse_date_param('2024-06-01T10:00:00')['value'] == date(2024, 6, 1)

    @pytest.mark.parametrize('value', ['01.06.2024', '2024-13-01', 'heute'])
    def test_invalid_date(self, value):
        result = parse_date_param(value, 'start')
        assert result['valid'] is False
        assert result['message'].startswith('start')


class TestFormatCurrencyEur:
    """Tests para formato de moneda alemán"""

    def test_simple_amount(self):
        assert format_currency_eur(3.5) == '3,50 €'

    def test_thousands_separator(self):
        assert format_currency_eur('1234.5') == '1.234,50 €'

    def test_zero(self):
        assert format_currency_eur(0) == '0,00 €'


def test_error_id_format():
    error_id = generate_error_id()
    assert len(error_id) == 8
    assert error_id == error_id.upper()
