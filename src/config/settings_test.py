"""Settings for the pytest run.

``SECRET_KEY`` and ``DATABASE_URL`` are injected before the base settings
are imported so the fail-fast checks there still apply to every other
environment.
"""

import os

os.environ.setdefault("SECRET_KEY", "test-only-secret-key-not-for-production")
os.environ.setdefault("DATABASE_URL", "sqlite://:memory:")

from config.settings import *  # noqa: E402,F401,F403
from config.settings import REST_FRAMEWORK as BASE_REST_FRAMEWORK  # noqa: E402

CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        "LOCATION": "preorder-tests",
    }
}

EMAIL_BACKEND = "django.core.mail.backends.locmem.EmailBackend"

CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = True

PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]

PAYMENT_GATEWAY_CALLBACK_TOKEN = "test-gateway-token"

REST_FRAMEWORK = {**BASE_REST_FRAMEWORK}
REST_FRAMEWORK["DEFAULT_THROTTLE_RATES"] = {
    **BASE_REST_FRAMEWORK.get("DEFAULT_THROTTLE_RATES", {}),
    "deposit_intent": "1000/minute",
    "allocation_run": "1000/minute",
}
