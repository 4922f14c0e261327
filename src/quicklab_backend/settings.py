import os
import threading

def _as_bool(value: str) -> bool:
    return value.lower() in ["true", "1", "yes", "on"]

class BackendSettings:
    _instance = None
    _lock = threading.Lock()

    def __init__(self):
        self.DEBUG_MODE = os.environ.get("DEBUG_MODE","development")
        self.DATABASE_URL = os.environ.get("DATABASE_URL", None)
        # GitLab instance the course trees are provisioned on
        self.GITLAB_URL = os.environ.get("GITLAB_URL", "https://gitlab.com")
        self.GITLAB_TOKEN = os.environ.get("GITLAB_TOKEN", None)
        self.GITLAB_PASSWORD_RESET_MAIL = _as_bool(os.environ.get("GITLAB_PASSWORD_RESET_MAIL", "true"))
        self.TA_MAIL_DOMAIN = os.environ.get("TA_MAIL_DOMAIN", "tudelft.nl")
        # Retry policy for transient GitLab failures
        self.PROVISION_MAX_ATTEMPTS = int(os.environ.get("PROVISION_MAX_ATTEMPTS", "5"))
        self.PROVISION_INITIAL_INTERVAL = float(os.environ.get("PROVISION_INITIAL_INTERVAL", "2.0"))
        self.PROVISION_BACKOFF_COEFFICIENT = float(os.environ.get("PROVISION_BACKOFF_COEFFICIENT", "2.0"))
        self.PROVISION_MAXIMUM_INTERVAL = float(os.environ.get("PROVISION_MAXIMUM_INTERVAL", "60.0"))

    def __new__(cls):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super(BackendSettings, cls).__new__(cls)
        return cls._instance

settings = BackendSettings()
