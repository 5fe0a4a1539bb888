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

MIDTRANS_SERVER_KEY = 'SB-Mid-server-test'
MIDTRANS_IS_PRODUCTION = False

PASSWORD_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']
