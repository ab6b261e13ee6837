"""
Utility functions for the German fiscal receipt service
Error responses, structured logging, company settings and input validation
"""
import os
import re
import uuid
import logging
from decimal import Decimal
from typing import Optional, Dict, Any
from datetime import datetime, date
from flask import jsonify, request, has_request_context

# Configure logging
logger = logging.getLogger(__name__)


def generate_error_id() -> str:
    """
    Short unique id for tracing an error in the logs

    Returns:
        str: first 8 characters of a UUID4, upper case
    """
    return str(uuid.uuid4())[:8].upper()


def get_request_context() -> Dict[str, Any]:
    """
    Request information for log records (endpoint, method, remote address)
    """
    if not has_request_context():
        return {'endpoint': None, 'method': None, 'remote_addr': None}

    return {
        'endpoint': request.endpoint,
        'method': request.method,
        'remote_addr': request.remote_addr
    }


def log_error(error_type: str, message: str, error_id: str = None,
              context: Dict[str, Any] = None, exc_info: bool = False):
    """
    Central error logging with request context

    Args:
        error_type: 'validation', 'not_found', 'store' or 'server'
        message: Description of the error
        error_id: Error id (generated when omitted)
        context: Extra context (receipt_number, date, ...)
        exc_info: Whether to include exception information
    """
    if error_id is None:
        error_id = generate_error_id()

    log_data = {
        'error_id': error_id,
        'error_type': error_type,
        'msg_detail': message,
    }
    log_data.update(get_request_context())

    if context:
        log_data.update(context)

    if error_type in ['validation', 'not_found']:
        logger.warning(f"[{error_id}] {message}", extra=log_data, exc_info=exc_info)
    else:  # store / server errors
        logger.error(f"[{error_id}] {message}", extra=log_data, exc_info=exc_info)


def log_success(operation: str, message: str, context: Dict[str, Any] = None):
    """
    Log a successful fiscal operation

    Args:
        operation: Operation name (e.g. 'receipt_created', 'receipts_exported')
        message: Description of the result
        context: Extra context (receipt_number, total_gross, ...)
    """
    log_data = {
        'operation': operation,
        'msg_detail': message,
        'timestamp': datetime.utcnow().isoformat()
    }
    log_data.update(get_request_context())

    if context:
        log_data.update(context)

    logger.info(f"[SUCCESS] {operation}: {message}", extra=log_data)


def error_response(error_type: str, message: str, details: Optional[str] = None,
                   field: Optional[str] = None, status_code: int = 400,
                   log_context: Dict[str, Any] = None, **kwargs):
    """
    Standard JSON error response for API endpoints, logged automatically

    Args:
        error_type: 'validation', 'not_found', 'store' or 'server'
        message: Short error message
        details: Additional details (optional)
        field: Field that caused the error (optional)
        status_code: HTTP status code (default: 400)
        log_context: Extra context for the log record
        **kwargs: Additional data for the response body

    Returns:
        tuple: (jsonify response, status_code)

    Examples:
        >>> return error_response(
        ...     error_type='validation',
        ...     message='Ungültige Produktkategorie',
        ...     details=str(e),
        ...     field='category'
        ... )
    """
    error_id = generate_error_id()

    log_error(
        error_type=error_type,
        message=message,
        error_id=error_id,
        context=log_context or {}
    )

    response_data = {
        'error': message,
        'type': error_type,
        'error_id': error_id,
        'timestamp': datetime.utcnow().isoformat()
    }

    if details:
        response_data['details'] = details

    if field:
        response_data['field'] = field

    response_data.update(kwargs)

    return jsonify(response_data), status_code


def format_currency_eur(amount) -> str:
    """
    Format an amount the German way: 1.234,50 €
    """
    formatted = f"{Decimal(str(amount)):,.2f}"
    formatted = formatted.replace(',', 'X').replace('.', ',').replace('X', '.')
    return f"{formatted} €"


def validate_vat_id(vat_id: str) -> Dict[str, Any]:
    """
    Validate a German USt-IdNr (DE followed by 9 digits)

    Args:
        vat_id: The VAT identification number

    Returns:
        Dict with validation result and formatted value
    """
    if not vat_id:
        return {
            'valid': True,
            'formatted': '',
            'message': 'USt-IdNr nicht angegeben'
        }

    clean_vat_id = re.sub(r'[\s\-.]', '', vat_id.upper())

    if not re.match(r'^DE\d{9}$', clean_vat_id):
        return {
            'valid': False,
            'formatted': clean_vat_id,
            'message': 'USt-IdNr muss das Format DE123456789 haben'
        }

    return {
        'valid': True,
        'formatted': clean_vat_id,
        'message': 'USt-IdNr gültig'
    }


def parse_date_param(value: Optional[str], field_name: str = "date") -> Dict[str, Any]:
    """
    Parse a YYYY-MM-DD query parameter

    Returns:
        Dict with 'valid', 'value' (date or None when empty) and 'message'
    """
    if not value:
        return {
            'valid': True,
            'value': None,
            'message': f'{field_name} nicht angegeben'
        }

    try:
        parsed = date.fromisoformat(value.strip()[:10])
    except ValueError:
        return {
            'valid': False,
            'value': value,
            'message': f'{field_name} muss das Format YYYY-MM-DD haben'
        }

    return {
        'valid': True,
        'value': parsed,
        'message': f'{field_name} gültig'
    }


DEFAULT_COMPANY_SETTINGS = {
    'company_name': {
        'value': 'Synacto GmbH',
        'description': 'Firmenname auf dem Kassenbeleg'
    },
    'company_address': {
        'value': 'Musterstraße 123',
        'description': 'Straße und Hausnummer'
    },
    'company_city': {
        'value': '10115 Berlin',
        'description': 'PLZ und Ort'
    },
    'company_vat_id': {
        'value': 'DE123456789',
        'description': 'Umsatzsteuer-Identifikationsnummer (USt-IdNr)'
    },
    'receipt_message': {
        'value': 'Vielen Dank für Ihren Besuch!',
        'description': 'Nachricht am Ende des Kassenbelegs'
    },
    'receipt_footer': {
        'value': 'Kassenbeleg - Bitte aufbewahren',
        'description': 'Fußzeile des Kassenbelegs'
    },
    'receipt_format': {
        'value': os.environ.get('RECEIPT_FORMAT', '80mm'),
        'description': 'Belegformat (80mm oder 58mm)'
    }
}


def initialize_company_settings() -> Dict[str, Any]:
    """
    Initialize default company settings in SystemConfiguration table

    Returns:
        Dict with initialization status
    """
    from models import SystemConfiguration, db

    created_count = 0
    updated_count = 0

    try:
        for key, config in DEFAULT_COMPANY_SETTINGS.items():
            existing_setting = SystemConfiguration.query.filter_by(key=key).first()

            if existing_setting:
                if existing_setting.description != config['description']:
                    existing_setting.description = config['description']
                    updated_count += 1
            else:
                new_setting = SystemConfiguration()
                new_setting.key = key
                new_setting.value = config['value']
                new_setting.description = config['description']
                db.session.add(new_setting)
                created_count += 1

        db.session.commit()

        return {
            'success': True,
            'created': created_count,
            'updated': updated_count,
            'message': f'Einstellungen initialisiert: {created_count} angelegt, {updated_count} aktualisiert'
        }

    except Exception as e:
        db.session.rollback()
        logger.error(f"Error initializing company settings: {str(e)}")
        return {
            'success': False,
            'message': f'Fehler beim Initialisieren der Einstellungen: {str(e)}'
        }


def get_company_settings() -> Dict[str, Any]:
    """
    Get all company settings from SystemConfiguration

    Returns:
        Dict with company settings
    """
    from models import SystemConfiguration

    settings = {}

    try:
        rows = SystemConfiguration.query.filter(
            SystemConfiguration.key.in_(list(DEFAULT_COMPANY_SETTINGS.keys()))
        ).all()
        stored = {row.key: row.value for row in rows}

        for key in DEFAULT_COMPANY_SETTINGS:
            settings[key] = stored.get(key) or ''

        return {
            'success': True,
            'settings': settings
        }

    except Exception as e:
        logger.warning(f"Could not read company settings: {str(e)}")
        return {
            'success': False,
            'message': f'Fehler beim Lesen der Einstellungen: {str(e)}',
            'settings': {}
        }


def update_company_setting(key: str, value: str) -> Dict[str, Any]:
    """
    Update a specific company setting

    Args:
        key: Setting key to update
        value: New value for the setting

    Returns:
        Dict with update status
    """
    from models import SystemConfiguration, db

    if key not in DEFAULT_COMPANY_SETTINGS:
        return {
            'success': False,
            'message': f'Unbekannte Einstellung: {key}'
        }

    if key == 'company_vat_id' and value:
        vat_id_validation = validate_vat_id(value)
        if not vat_id_validation['valid']:
            return {
                'success': False,
                'message': f'USt-IdNr ungültig: {vat_id_validation["message"]}'
            }
        value = vat_id_validation['formatted']

    if key == 'receipt_format' and value not in ('58mm', '80mm'):
        return {
            'success': False,
            'message': 'Belegformat muss 58mm oder 80mm sein'
        }

    try:
        setting = SystemConfiguration.query.filter_by(key=key).first()

        if setting:
            setting.value = value
        else:
            setting = SystemConfiguration()
            setting.key = key
            setting.value = value
            setting.description = DEFAULT_COMPANY_SETTINGS[key]['description']
            db.session.add(setting)

        db.session.commit()

        return {
            'success': True,
            'message': f'Einstellung {key} gespeichert'
        }

    except Exception as e:
        db.session.rollback()
        logger.error(f"Error updating company setting {key}: {str(e)}")
        return {
            'success': False,
            'message': f'Fehler beim Speichern der Einstellung: {str(e)}'
        }


def get_company_info_for_receipt() -> Dict[str, str]:
    """
    Get formatted company information for receipt generation

    Returns:
        Dict with company header and footer lines, falling back to defaults
    """
    company_data = get_company_settings()
    settings = company_data['settings'] if company_data['success'] else {}

    def setting(key):
        return settings.get(key) or DEFAULT_COMPANY_SETTINGS[key]['value']

    return {
        'name': setting('company_name'),
        'address': setting('company_address'),
        'city': setting('company_city'),
        'vat_id': setting('company_vat_id'),
        'message': setting('receipt_message'),
        'footer': setting('receipt_footer'),
        'format': setting('receipt_format')
    }
