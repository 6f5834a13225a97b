"""
Test settings: SQLite, local-memory caches and eager Celery.

Usage:
    DJANGO_SETTINGS_MODULE=config.settings.test pytest apps/profiles/tests.py -v
"""
from .development import *  # noqa: F401,F403

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
    }
}

CACHES = {
    'default': {
        'BACKEND': 'django.core.cache.backends.locmem.LocMemCache',
    },
    'insights': {
        'BACKEND': 'django.core.cache.backends.locmem.LocMemCache',
        'LOCATION': 'insights-test',
    },
}

# Disable debug toolbar in tests (avoids middleware issues)
INSTALLED_APPS = [
    app for app in INSTALLED_APPS
    if app != 'debug_toolbar'
]
MIDDLEWARE = [
    mw for mw in MIDDLEWARE
    if mw != 'debug_toolbar.middleware.DebugToolbarMiddleware'
]

PASSWORD_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']

# Run tasks inline (no broker)
CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = True
