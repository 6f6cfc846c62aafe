"""
Shared constants for Dayflow.
Single source of truth — imported by every other module.
"""

import pathlib

# ── Application identity ──────────────────────────────────────────────
APP_NAME = "Dayflow"
APP_BUNDLE_ID = "com.local.dayflow"
APP_VERSION = "1.0.0"

# ── Filesystem paths ─────────────────────────────────────────────────
HOME = pathlib.Path.home()

APP_SUPPORT_DIR = HOME / "Library" / "Application Support" / APP_NAME
LOG_DIR = HOME / "Library" / "Logs" / APP_NAME
DB_FILENAME = "chunks.db"
CONFIG_FILENAME = "config.json"
RECORDINGS_DIRNAME = "recordings"
TIMELAPSES_DIRNAME = "timelapses"

DB_PATH = APP_SUPPORT_DIR / DB_FILENAME
CONFIG_PATH = APP_SUPPORT_DIR / CONFIG_FILENAME

CHUNK_EXTENSION = "mp4"
CHUNK_MIME_TYPE = "video/mp4"
TIMELAPSE_FILENAME = f"timelapse.{CHUNK_EXTENSION}"

# ── Keychain identifiers ─────────────────────────────────────────────
KEYCHAIN_SERVICE_PREFIX = "Dayflow.ApiKeys."
KEYCHAIN_ACCOUNT = "Dayflow"
API_KEY_ENV_PREFIX = "DAYFLOW_API_KEY_"

# ── Job status values ─────────────────────────────────────────────────
class JobStatus:
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

TERMINAL_STATUSES = {JobStatus.COMPLETED, JobStatus.FAILED}

# ── Timeline categories (closed set) ──────────────────────────────────
class Category:
    CODING = "Coding"
    MEETING = "Meeting"
    EMAIL = "Email"
    RESEARCH = "Research"
    DOCUMENTATION = "Documentation"
    SOCIAL_MEDIA = "Social Media"
    ENTERTAINMENT = "Entertainment"
    PRODUCTIVITY = "Productivity"
    COMMUNICATION = "Communication"
    DESIGN = "Design"
    OTHER = "Other"

CATEGORIES = [
    Category.CODING,
    Category.MEETING,
    Category.EMAIL,
    Category.RESEARCH,
    Category.DOCUMENTATION,
    Category.SOCIAL_MEDIA,
    Category.ENTERTAINMENT,
    Category.PRODUCTIVITY,
    Category.COMMUNICATION,
    Category.DESIGN,
    Category.OTHER,
]

# Categories that are distractions without asking the model
DISTRACTION_CATEGORIES = {Category.SOCIAL_MEDIA, Category.ENTERTAINMENT}

# ── Error codes ───────────────────────────────────────────────────────
class ErrorCode:
    # Non-retryable
    STORE_NOT_INITIALIZED = "ERR_STORE_NOT_INITIALIZED"
    STORAGE_IO = "ERR_STORAGE_IO"
    CONFIGURATION = "ERR_CONFIGURATION"
    PROVIDER_RESPONSE_INVALID = "ERR_PROVIDER_RESPONSE_INVALID"
    FRAME_EXTRACTION = "ERR_FRAME_EXTRACTION"
    CHUNKS_MISSING = "ERR_CHUNKS_MISSING"
    CANCELLED = "ERR_CANCELLED"

    # Retryable
    PROVIDER_REQUEST = "ERR_PROVIDER_REQUEST"
    PROVIDER_TIMEOUT = "ERR_PROVIDER_TIMEOUT"
    NETWORK_TRANSIENT = "ERR_NETWORK_TRANSIENT"

    # Jobs failed by something outside the error taxonomy
    UNEXPECTED = "ERR_UNEXPECTED"
    INTERRUPTED = "ERR_INTERRUPTED"

RETRYABLE_ERRORS = {
    ErrorCode.PROVIDER_REQUEST,
    ErrorCode.PROVIDER_TIMEOUT,
    ErrorCode.NETWORK_TRANSIENT,
    ErrorCode.INTERRUPTED,
}

MAX_ERROR_MESSAGE_LEN = 2000

# ── Capture / storage defaults ────────────────────────────────────────
CHUNK_DURATION_SEC = 15
RETENTION_DAYS = 3
SWEEP_INTERVAL_MINUTES = 60

# ── AI providers ──────────────────────────────────────────────────────
class ProviderName:
    LOCAL = "local"
    GEMINI = "gemini"

# Local (Ollama / LM Studio)
LOCAL_ENDPOINT = "http://localhost:11434"
LOCAL_MODEL = "llava"
FRAME_SAMPLE_COUNT = 30

# Gemini
GEMINI_CREDENTIAL_NAME = "Gemini"
GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta"
GEMINI_UPLOAD_URL = "https://generativelanguage.googleapis.com/upload/v1beta/files"
GEMINI_MODEL = "gemini-1.5-flash"
GEMINI_FILE_POLL_ATTEMPTS = 10
GEMINI_FILE_POLL_DELAY = 2.0   # seconds

REQUEST_TIMEOUT_SEC = 120
