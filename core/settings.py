from environs import Env
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

env = Env()
env.read_env(BASE_DIR / '.env')

APP_ENV = env.str('APP_ENV', 'local')

SECRET_KEY = env.str('APP_SECRET_KEY', 'change-me')

DEBUG = APP_ENV != 'production'

ALLOWED_HOSTS = env.list('ALLOWED_HOSTS', default=['*'])

INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    'rest_framework',
    'facilitator',
]

MIDDLEWARE = [
    'core.middleware.CorsMiddleware',
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

ROOT_URLCONF = 'core.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.debug',
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

WSGI_APPLICATION = 'core.wsgi.application'


DATABASE_ENGINE = env.str('DATABASE_ENGINE', 'django.db.backends.sqlite3')

if DATABASE_ENGINE.endswith('sqlite3'):
    DATABASES = {
        'default': {
            'ENGINE': DATABASE_ENGINE,
            'NAME': env.str('SQLITE_PATH', str(BASE_DIR / 'db.sqlite3')),
        }
    }
else:
    DATABASES = {
        'default': {
            'ENGINE': DATABASE_ENGINE,
            'NAME': env.str(
                'PGSQL_DATABASE_FACILITATOR',
                env.str('PGSQL_DATABASE', 'x402_facilitator'),
            ),
            'USER': env.str('PGSQL_USER', 'postgres'),
            'PASSWORD': env.str('PGSQL_PASSWORD', 'mysecretpassword'),
            'HOST': env.str('PGSQL_HOST', 'localhost'),
            'PORT': env.int('PGSQL_PORT', 5432),
        }
    }


AUTH_PASSWORD_VALIDATORS = [
    {
        'NAME': 'django.contrib.auth.password_validation.UserAttributeSimilarityValidator',
    },
    {
        'NAME': 'django.contrib.auth.password_validation.MinimumLengthValidator',
    },
    {
        'NAME': 'django.contrib.auth.password_validation.CommonPasswordValidator',
    },
    {
        'NAME': 'django.contrib.auth.password_validation.NumericPasswordValidator',
    },
]


LANGUAGE_CODE = 'en-us'

TIME_ZONE = 'UTC'

USE_I18N = True

USE_TZ = True


STATIC_URL = '/static/'
STATIC_ROOT = BASE_DIR / 'static'

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

REST_FRAMEWORK = {
    'DEFAULT_RENDERER_CLASSES': [
        'rest_framework.renderers.JSONRenderer',
    ],
}

CORS_ALLOW_ORIGIN = env.str('CORS_ALLOW_ORIGIN', '*')

# Signer used for every supported network.
X402_SIGNER_PRIVATE_KEY = env.str('X402_SIGNER_PRIVATE_KEY', '')
X402_SIGNER_ADDRESS = env.str('X402_SIGNER_ADDRESS', '')

X402_BASE_RPC_URL = env.str('X402_BASE_RPC_URL', 'https://mainnet.base.org')
X402_BASE_SEPOLIA_RPC_URL = env.str(
    'X402_BASE_SEPOLIA_RPC_URL', 'https://sepolia.base.org')

# Payment terminal receiving settled funds.
X402_TERMINAL_ADDRESS = env.str(
    'X402_TERMINAL_ADDRESS', '0xdb9644369c79c3633cde70d2df50d827d7dc7dbc')
X402_TERMINAL_PROJECT_ID = env.int('X402_TERMINAL_PROJECT_ID', 127)
X402_TERMINAL_MEMO = env.str('X402_TERMINAL_MEMO', 'x402 settlement')

X402_GAS_LIMIT = env.int('X402_GAS_LIMIT', 250000)
X402_MAX_FEE_PER_GAS_WEI = env.int('X402_MAX_FEE_PER_GAS_WEI', 0)
X402_MAX_PRIORITY_FEE_PER_GAS_WEI = env.int(
    'X402_MAX_PRIORITY_FEE_PER_GAS_WEI', 0)
X402_TX_TIMEOUT_SECONDS = env.int('X402_TX_TIMEOUT_SECONDS', 120)
X402_RPC_TIMEOUT_SECONDS = env.float('X402_RPC_TIMEOUT_SECONDS', 10.0)

X402_MAX_SUBMISSION_ATTEMPTS = env.int('X402_MAX_SUBMISSION_ATTEMPTS', 3)
X402_RETRY_BASE_DELAY_SECONDS = env.float('X402_RETRY_BASE_DELAY_SECONDS', 1.0)
X402_RETRY_MAX_DELAY_SECONDS = env.float('X402_RETRY_MAX_DELAY_SECONDS', 8.0)
X402_MAX_CONCURRENT_SUBMISSIONS = env.int('X402_MAX_CONCURRENT_SUBMISSIONS', 4)

X402_MIN_CONFIRMATIONS = env.int('X402_MIN_CONFIRMATIONS', 1)
X402_POLL_INTERVAL_SECONDS = env.float('X402_POLL_INTERVAL_SECONDS', 2.0)

# 'database' persists settlement records, 'memory' keeps them in-process.
X402_SETTLEMENT_STORE = env.str('X402_SETTLEMENT_STORE', 'database')

# Memory store only: how long finished settlements are kept, and how often
# they are swept.
X402_TERMINAL_RETENTION_SECONDS = env.float('X402_TERMINAL_RETENTION_SECONDS', 3600.0)
X402_EVICTION_INTERVAL_SECONDS = env.float('X402_EVICTION_INTERVAL_SECONDS', 60.0)
