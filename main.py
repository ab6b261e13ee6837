import os
import time
import logging
from logging.handlers import RotatingFileHandler
import sys

# Fiscal day boundaries are local German time
os.environ.setdefault('TZ', 'Europe/Berlin')
if hasattr(time, 'tzset'):
    time.tzset()

from flask import Flask, request, redirect, url_for, jsonify
from flask_wtf.csrf import CSRFProtect
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from werkzeug.middleware.proxy_fix import ProxyFix

from german_compliance import DEFAULT_FISCAL_MEMORY_SERIAL


# Configure logging with rotation
def setup_logging():
    """
    Centralized logging with rotating log files

    Log levels:
    - DEBUG: detailed information for debugging
    - INFO: receipts created, reports, exports
    - WARNING: failed validations, expected errors
    - ERROR: receipt persistence failures, unexpected errors
    """
    log_dir = os.environ.get('LOG_DIR', 'logs')
    if not os.path.exists(log_dir):
        os.makedirs(log_dir)

    log_format = logging.Formatter(
        '[%(asctime)s] %(levelname)s [%(name)s:%(lineno)d] - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    # 10 MB per file, keep 10 files
    file_handler = RotatingFileHandler(
        filename=os.path.join(log_dir, 'fiscal_app.log'),
        maxBytes=10 * 1024 * 1024,
        backupCount=10,
        encoding='utf-8'
    )
    file_handler.setFormatter(log_format)
    file_handler.setLevel(logging.INFO)

    error_handler = RotatingFileHandler(
        filename=os.path.join(log_dir, 'fiscal_errors.log'),
        maxBytes=10 * 1024 * 1024,
        backupCount=10,
        encoding='utf-8'
    )
    error_handler.setFormatter(log_format)
    error_handler.setLevel(logging.ERROR)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(log_format)
    console_handler.setLevel(logging.DEBUG if os.environ.get("ENVIRONMENT") != "production" else logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.handlers.clear()

    root_logger.addHandler(file_handler)
    root_logger.addHandler(error_handler)
    root_logger.addHandler(console_handler)

    # Quieter third-party loggers
    logging.getLogger('werkzeug').setLevel(logging.WARNING)
    logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)

    logging.info("Logging configured")


setup_logging()

# create the app
app = Flask(__name__)

# Add ProxyFix middleware for proper reverse proxy handling
app.wsgi_app = ProxyFix(app.wsgi_app, x_proto=1, x_host=1)
# setup a secret key - MUST be set in production
app.secret_key = os.environ.get("SESSION_SECRET")
if not app.secret_key:
    if os.environ.get("ENVIRONMENT") == "production":
        raise RuntimeError("SESSION_SECRET environment variable must be set in production")
    else:
        app.secret_key = "dev-secret-key-change-in-production"

csrf = CSRFProtect(app)
app.config['WTF_CSRF_TIME_LIMIT'] = 3600  # 1 hour token lifetime

limiter = Limiter(
    app=app,
    key_func=get_remote_address,
    default_limits=["100 per hour"],
    storage_uri="memory://"
)

app.config['SESSION_COOKIE_SECURE'] = os.environ.get("ENVIRONMENT") == "production"
app.config['SESSION_COOKIE_HTTPONLY'] = True
app.config['SESSION_COOKIE_SAMESITE'] = 'Lax'

# Fiscal device identity printed on every Kassenbeleg
app.config['FISCAL_MEMORY_SERIAL'] = os.environ.get('FISCAL_MEMORY_SERIAL', DEFAULT_FISCAL_MEMORY_SERIAL)

app.config["SQLALCHEMY_DATABASE_URI"] = os.environ.get("DATABASE_URL", "sqlite:///fiscal.db")
app.config["SQLALCHEMY_ENGINE_OPTIONS"] = {
    "pool_recycle": 300,
    "pool_pre_ping": True,
}

# Import models and get db instance
import models  # noqa: F401
from models import db

db.init_app(app)

# Import routes after app initialization
from routes import fiscal

# JSON API consumed by the POS front end, no form posts
csrf.exempt(fiscal.bp)
# Every sale posts a receipt; the global default would stop a busy till
limiter.limit(os.environ.get('FISCAL_API_RATE_LIMIT', '3000 per hour'))(fiscal.bp)
app.register_blueprint(fiscal.bp)


@app.route('/')
def index():
    """Redirect root to today's Tagesbericht"""
    return redirect(url_for('fiscal.daily_report'))


@app.route('/health')
@limiter.exempt
def health():
    return jsonify({'status': 'ok'})


@app.after_request
def add_security_headers(response):
    """Add security headers for production"""
    if os.environ.get("ENVIRONMENT") == "production":
        response.headers['X-Content-Type-Options'] = 'nosniff'
        response.headers['X-Frame-Options'] = 'DENY'
        response.headers['Strict-Transport-Security'] = 'max-age=31536000; includeSubDomains'

    # Fiscal data must never be served from a cache
    if request.endpoint != 'health':
        response.headers['Cache-Control'] = 'no-cache, no-store, must-revalidate'
        response.headers['Pragma'] = 'no-cache'
        response.headers['Expires'] = '0'
    return response


# Run the application in development mode
if __name__ == '__main__':
    app.run(host='0.0.0.0', port=5000, debug=True)
