from .base import *

DEBUG = False

SECRET_KEY = 'test-secret-key'

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
    }
}

ALLOWED_HOSTS = ['testserver']

EMAIL_BACKEND = 'django.core.mail.backends.locmem.EmailBackend'
DONATION_OVERSIGHT_EMAIL = 'oversight@example.com'
DEFAULT_FROM_EMAIL = 'noreply@example.com'

NOTIFICATION_RETRY_BACKOFF_SECONDS = 0

PASSWORD_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']
