import os

from src.services.trust_policy import TrustPolicy, default_policy, load_policy_file


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "a_default_secret_key")
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", "sqlite:///trust.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    TRUST_POLICY_FILE = os.getenv("TRUST_POLICY_FILE")
    TRUST_DB_MIGRATE_ON_START = os.getenv("TRUST_DB_MIGRATE_ON_START", "true").lower() == "true"
    TRUST_ALERT_WEBHOOK_URL = os.getenv("TRUST_ALERT_WEBHOOK_URL")
    TRUST_ALERT_BUFFER_SIZE = int(os.getenv("TRUST_ALERT_BUFFER_SIZE", "500"))


def _env_int(name: str):
    value = os.getenv(name)
    return int(value) if value not in (None, "") else None


def load_trust_policy(policy_file: str = None) -> TrustPolicy:
    """
    Build the active policy: defaults, then the JSON policy file, then the
    single-value environment overrides. Raises ValueError on an invalid policy.
    """
    policy = default_policy()

    policy_file = policy_file or os.getenv("TRUST_POLICY_FILE")
    if policy_file:
        policy = load_policy_file(policy_file, base=policy)

    overrides = {
        'max_clock_skew_seconds': _env_int("TRUST_MAX_CLOCK_SKEW_SECONDS"),
        'snapshot_interval_days': _env_int("TRUST_SNAPSHOT_INTERVAL_DAYS"),
        'recent_window_days': _env_int("TRUST_RECENT_WINDOW_DAYS"),
    }
    for key, value in overrides.items():
        if value is not None:
            setattr(policy, key, value)

    for role in policy.roles.values():
        threshold = _env_int(f"TRUST_RECOVERY_THRESHOLD_{role.role.value.upper()}")
        if threshold is not None:
            role.recovery_threshold = threshold

    return policy.validate()
