"""Configuration settings for the Page Email Pipeline services"""
import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env files.
# Root .env provides shared config, package .env can override it for local dev.
package_dir = Path(__file__).resolve().parent  # email_pipeline/
project_root = package_dir.parent              # page-email-pipeline/

env_paths_in_order = [
    project_root / ".env",
    package_dir / ".env",
    Path.home() / ".env",  # ~/.env (server deployment)
]

any_env_loaded = False
for env_path in env_paths_in_order:
    if env_path.exists():
        load_dotenv(dotenv_path=env_path, override=True)
        any_env_loaded = True
        break

# Also try loading from current directory (for compatibility)
if not any_env_loaded:
    load_dotenv(override=True)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ('1', 'true', 'yes', 'y', 'on')


# Database - queue backend
DB_HOST = os.getenv('DB_HOST', 'localhost')
DB_PORT = os.getenv('DB_PORT', '5432')
DB_NAME = os.getenv('DB_NAME', 'email_pipeline')
DB_USER = os.getenv('DB_USER', 'postgres')
DB_PASSWORD = os.getenv('DB_PASSWORD', '')

# Database connection string (for psycopg2)
DATABASE_URL = os.getenv('DATABASE_URL', f"postgresql://{DB_USER}:{DB_PASSWORD}@{DB_HOST}:{DB_PORT}/{DB_NAME}")

# "postgres" for the durable store, "memory" only for the single-process runner
QUEUE_BACKEND = os.getenv('QUEUE_BACKEND', 'postgres').strip().lower()

# Queue names
SCRAPE_QUEUE_NAME = 'scrape-queue'
RESULTS_QUEUE_NAME = 'results-queue'
DEAD_LETTER_QUEUE_NAME = 'dead-letter'

# Scrape queue policy: 3 attempts, 2s -> 4s -> 8s backoff
SCRAPE_QUEUE_ATTEMPTS = int(os.getenv('SCRAPE_QUEUE_ATTEMPTS', '3'))
SCRAPE_QUEUE_BACKOFF_MS = int(os.getenv('SCRAPE_QUEUE_BACKOFF_MS', '2000'))
SCRAPE_QUEUE_KEEP_COMPLETED = int(os.getenv('SCRAPE_QUEUE_KEEP_COMPLETED', '100'))
SCRAPE_QUEUE_KEEP_COMPLETED_AGE = int(os.getenv('SCRAPE_QUEUE_KEEP_COMPLETED_AGE', '3600'))
SCRAPE_QUEUE_KEEP_FAILED = int(os.getenv('SCRAPE_QUEUE_KEEP_FAILED', '500'))
SCRAPE_QUEUE_KEEP_FAILED_AGE = int(os.getenv('SCRAPE_QUEUE_KEEP_FAILED_AGE', '86400'))

# Results queue policy: writing is critical, so more attempts and longer retention of failures
RESULTS_QUEUE_ATTEMPTS = int(os.getenv('RESULTS_QUEUE_ATTEMPTS', '5'))
RESULTS_QUEUE_BACKOFF_MS = int(os.getenv('RESULTS_QUEUE_BACKOFF_MS', '3000'))
RESULTS_QUEUE_KEEP_COMPLETED = int(os.getenv('RESULTS_QUEUE_KEEP_COMPLETED', '50'))
RESULTS_QUEUE_KEEP_COMPLETED_AGE = int(os.getenv('RESULTS_QUEUE_KEEP_COMPLETED_AGE', '1800'))
RESULTS_QUEUE_KEEP_FAILED = int(os.getenv('RESULTS_QUEUE_KEEP_FAILED', '1000'))
RESULTS_QUEUE_KEEP_FAILED_AGE = int(os.getenv('RESULTS_QUEUE_KEEP_FAILED_AGE', '172800'))

# Consumer settings
QUEUE_POLL_INTERVAL = float(os.getenv('QUEUE_POLL_INTERVAL', '1.0'))
STALLED_JOB_TIMEOUT_SECONDS = int(os.getenv('STALLED_JOB_TIMEOUT_SECONDS', '600'))

# Scrape worker settings
WORKER_CONCURRENCY = int(os.getenv('WORKER_CONCURRENCY', '3'))
WORKER_RATE_MAX = int(os.getenv('WORKER_RATE_MAX', '10'))
WORKER_RATE_DURATION_MS = int(os.getenv('WORKER_RATE_DURATION_MS', '1000'))

# Syncer (sink batcher) settings
SYNC_BUFFER_SIZE = int(os.getenv('SYNC_BUFFER_SIZE', '50'))
SYNC_FLUSH_INTERVAL_MS = int(os.getenv('SYNC_FLUSH_INTERVAL_MS', '30000'))
SYNC_MAX_RETRIES = int(os.getenv('SYNC_MAX_RETRIES', '3'))
SYNC_RETRY_BASE_MS = int(os.getenv('SYNC_RETRY_BASE_MS', '2000'))
DEAD_LETTER_ENABLED = _env_bool('DEAD_LETTER_ENABLED', 'true')

# Ingestor settings
INGESTOR_BATCH_SIZE = int(os.getenv('INGESTOR_BATCH_SIZE', '100'))
INGESTOR_POLL_INTERVAL_MS = int(os.getenv('INGESTOR_POLL_INTERVAL_MS', '60000'))
INGESTOR_BURST_DELAY_MS = int(os.getenv('INGESTOR_BURST_DELAY_MS', '5000'))
GOOGLE_SHEET_IDS = [s.strip() for s in os.getenv('GOOGLE_SHEET_ID', '').split(',') if s.strip()]

# Google Sheets credentials (service account)
GOOGLE_SERVICE_ACCOUNT_EMAIL = os.getenv('GOOGLE_SERVICE_ACCOUNT_EMAIL', '')
GOOGLE_PRIVATE_KEY = os.getenv('GOOGLE_PRIVATE_KEY', '')
GOOGLE_SERVICE_ACCOUNT_FILE = os.getenv('GOOGLE_SERVICE_ACCOUNT_FILE', '')

# Cookie sessions for authenticated browsing (empty = public pages only)
FACEBOOK_COOKIES = os.getenv('FACEBOOK_COOKIES', '')
FACEBOOK_COOKIES_FILE = os.getenv('FACEBOOK_COOKIES_FILE', '')

# Browser automation settings
BROWSER_HEADLESS = _env_bool('BROWSER_HEADLESS', 'true')
SCRAPER_NAV_TIMEOUT_MS = int(os.getenv('SCRAPER_NAV_TIMEOUT_MS', '30000'))
SCRAPER_RENDER_WAIT_MS = int(os.getenv('SCRAPER_RENDER_WAIT_MS', '5000'))

# User agent for browser
USER_AGENT = os.getenv(
    'USER_AGENT',
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
)

# Control plane server settings
API_HOST = os.getenv('API_HOST', '0.0.0.0')  # Listen on all interfaces for cloud
API_PORT = int(os.getenv('API_PORT', os.getenv('PORT', '3000')))
DEBUG = _env_bool('DEBUG', 'false')

# Logging
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()
LOG_DIR = os.getenv('LOG_DIR', '')
