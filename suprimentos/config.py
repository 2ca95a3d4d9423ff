import os


def _bool_env(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _int_env(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


class Config:
    BASE_DIR = os.path.dirname(os.path.dirname(__file__))
    DATABASE_URL = os.environ.get("DATABASE_URL")
    DATABASE_DIR = None if DATABASE_URL else os.path.join(BASE_DIR, "database")
    DB_PATH = DATABASE_URL or os.path.join(DATABASE_DIR, "padoca_suprimentos.db")
    DB_AUTO_INIT = _bool_env("DB_AUTO_INIT", True)

    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-padoca-suprimentos")
    LOG_JSON = _bool_env("LOG_JSON", True)
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # sql: documentos no banco do servico; memory: processo local (dev/testes)
    DOCUMENT_STORE_MODE = os.environ.get("DOCUMENT_STORE_MODE", "sql")
    # sql: tabela local_cache; memory: dicionario do processo
    LOCAL_CACHE_MODE = os.environ.get("LOCAL_CACHE_MODE", "sql")
    QUOTATION_CACHE_KEY = os.environ.get("QUOTATION_CACHE_KEY", "padoca_sent_emails")
    INVENTORY_CACHE_KEY = os.environ.get("INVENTORY_CACHE_KEY", "padoca_inventory")
    SUPPLIER_CACHE_KEY = os.environ.get("SUPPLIER_CACHE_KEY", "padoca_suppliers")

    EMAIL_MODE = os.environ.get("EMAIL_MODE", "mock")
    GMAIL_API_BASE_URL = os.environ.get("GMAIL_API_BASE_URL", "https://gmail.googleapis.com/gmail/v1")
    GMAIL_ACCESS_TOKEN = os.environ.get("GMAIL_ACCESS_TOKEN")
    GMAIL_SENDER = os.environ.get("GMAIL_SENDER", "me")

    ANALYSIS_MODE = os.environ.get("ANALYSIS_MODE", "rules")
    GEMINI_API_BASE = os.environ.get("GEMINI_API_BASE", "https://generativelanguage.googleapis.com/v1beta")
    GEMINI_API_KEY = os.environ.get("GEMINI_API_KEY")
    GEMINI_MODEL = os.environ.get("GEMINI_MODEL", "gemini-1.5-flash")

    HTTP_TIMEOUT_SECONDS = _int_env("HTTP_TIMEOUT_SECONDS", 20)
    HTTP_RETRY_ATTEMPTS = _int_env("HTTP_RETRY_ATTEMPTS", 2)
    HTTP_RETRY_BACKOFF_MS = _int_env("HTTP_RETRY_BACKOFF_MS", 300)

    DUPLICATE_WINDOW_SECONDS = _int_env("DUPLICATE_WINDOW_SECONDS", 3600)
    SEND_IDEMPOTENCY_WINDOW_SECONDS = _int_env("SEND_IDEMPOTENCY_WINDOW_SECONDS", 300)

    REPLY_POLL_ENABLED = _bool_env("REPLY_POLL_ENABLED", True)
    REPLY_POLL_INTERVAL_SECONDS = _int_env("REPLY_POLL_INTERVAL_SECONDS", 60)
    REPLY_POLL_MIN_BACKOFF_SECONDS = _int_env("REPLY_POLL_MIN_BACKOFF_SECONDS", 30)
    REPLY_POLL_MAX_BACKOFF_SECONDS = _int_env("REPLY_POLL_MAX_BACKOFF_SECONDS", 600)

    NOTIFICATION_HISTORY_LIMIT = _int_env("NOTIFICATION_HISTORY_LIMIT", 100)
    QUOTATION_SENDER_NAME = os.environ.get("QUOTATION_SENDER_NAME", "Equipe Padoca")

    def __init__(self):
        env = os.environ.get("FLASK_ENV", "development").lower()
        if env == "production" and not self.DATABASE_URL:
            raise RuntimeError("DATABASE_URL nao definida para ambiente de producao.")
        if env == "production" and self.SECRET_KEY == "dev-secret-padoca-suprimentos":
            raise RuntimeError("SECRET_KEY insegura para producao.")
