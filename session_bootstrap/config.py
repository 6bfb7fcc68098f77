import os
from dataclasses import dataclass
from dotenv import load_dotenv

load_dotenv()


def _str_to_bool(value: str | None) -> bool:
    if value is None:
        return False
    return value.lower() in ("1", "true", "yes", "y", "on")


@dataclass
class Settings:
    # Redis (durable scope)
    redis_host: str | None
    redis_port: int
    redis_password: str | None
    redis_tls: bool
    redis_db: int
    redis_tls_verify: bool
    use_local_redis: bool

    # Firebase
    firebase_api_key: str | None
    google_project_id: str | None
    profiles_collection: str
    events_collection: str

    # Pending intent store
    storage_key_prefix: str
    provider_auth_prefix: str
    durable_scope_namespace: str
    browsing_context_id: str
    pending_intent_ttl_seconds: int

    # Profile resolution poller
    poll_max_attempts: int
    poll_deadline_seconds: float
    poll_base_delay_ms: int
    poll_delay_step_ms: int
    poll_max_delay_ms: int

    # Routes
    admin_home_path: str
    attendee_home_path: str
    login_path: str
    resume_purchase_prefix: str
    oauth_redirect_url: str


def get_settings() -> Settings:
    use_local = _str_to_bool(os.getenv("USE_LOCAL_REDIS"))

    raw_host = os.getenv("REDIS_HOST")
    raw_port = os.getenv("REDIS_PORT")
    raw_pwd = os.getenv("REDIS_PASSWORD")
    raw_tls = os.getenv("REDIS_TLS")
    raw_db = os.getenv("REDIS_DB")
    raw_tls_verify = os.getenv("REDIS_TLS_VERIFY", "true")

    if use_local:
        # Local override ignores the cloud values entirely
        host = "127.0.0.1"
        port = 6379
        password = None
        tls = False
        db = int(raw_db or "0")
        tls_verify = False
    else:
        host = raw_host
        port = int(raw_port or "6379")
        password = raw_pwd
        tls = _str_to_bool(raw_tls)
        db = int(raw_db or "0")
        tls_verify = _str_to_bool(raw_tls_verify)

    return Settings(
        redis_host=host,
        redis_port=port,
        redis_password=password,
        redis_tls=tls,
        redis_db=db,
        redis_tls_verify=tls_verify,
        use_local_redis=use_local,
        firebase_api_key=os.getenv("FIREBASE_API_KEY"),
        google_project_id=os.getenv("GOOGLE_PROJECT_ID"),
        profiles_collection=os.getenv("PROFILES_COLLECTION", "profiles"),
        events_collection=os.getenv("EVENTS_COLLECTION", "events"),
        storage_key_prefix=os.getenv("STORAGE_KEY_PREFIX", "pending."),
        provider_auth_prefix=os.getenv("PROVIDER_AUTH_PREFIX", "firebase:authUser:"),
        durable_scope_namespace=os.getenv("DURABLE_SCOPE_NAMESPACE", "session_bootstrap"),
        browsing_context_id=os.getenv("BROWSING_CONTEXT_ID", "default"),
        pending_intent_ttl_seconds=int(os.getenv("PENDING_INTENT_TTL_SECONDS", "600")),
        poll_max_attempts=int(os.getenv("POLL_MAX_ATTEMPTS", "50")),
        poll_deadline_seconds=float(os.getenv("POLL_DEADLINE_SECONDS", "10")),
        poll_base_delay_ms=int(os.getenv("POLL_BASE_DELAY_MS", "100")),
        poll_delay_step_ms=int(os.getenv("POLL_DELAY_STEP_MS", "10")),
        poll_max_delay_ms=int(os.getenv("POLL_MAX_DELAY_MS", "500")),
        admin_home_path=os.getenv("ADMIN_HOME_PATH", "/admin"),
        attendee_home_path=os.getenv("ATTENDEE_HOME_PATH", "/attendee"),
        login_path=os.getenv("LOGIN_PATH", "/login"),
        resume_purchase_prefix=os.getenv("RESUME_PURCHASE_PREFIX", "/buy-tickets/"),
        oauth_redirect_url=os.getenv("OAUTH_REDIRECT_URL", "http://localhost:8090/auth/callback"),
    )
