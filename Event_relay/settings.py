from pathlib import Path
import os

from dotenv import load_dotenv

load_dotenv()

# Build paths inside the project like this: BASE_DIR / 'subdir'.
BASE_DIR = Path(__file__).resolve().parent.parent

# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = os.getenv('SECRET_KEY', 'event-relay-local')
DEBUG = os.getenv('DEBUG', 'False').lower() == 'true'

ALLOWED_HOSTS = []

# Application definition

INSTALLED_APPS = [
    # my apps
    'relay_provisioning',
]

# Every entity lives for one run only - no database
DATABASES = {}

# Internationalization
# https://docs.djangoproject.com/en/5.2/topics/i18n/

LANGUAGE_CODE = 'en-us'

TIME_ZONE = 'UTC'

USE_I18N = False

USE_TZ = True

# Logging

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "plain": {
            "format": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "plain",
        },
    },
    "loggers": {
        "relay_provisioning": {
            "handlers": ["console"],
            "level": LOG_LEVEL,
            "propagate": False,
        },
        "botocore": {
            "handlers": ["console"],
            "level": "WARNING",
        },
    },
}

# Celery / Brokers
# The workflow is a one-shot run; tasks execute in-process unless a broker is configured.

CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", "memory://")
CELERY_RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", "cache+memory://")
CELERY_TASK_TRACK_STARTED = True
CELERY_ACCEPT_CONTENT = ["json"]
CELERY_TASK_SERIALIZER = "json"
CELERY_RESULT_SERIALIZER = "json"
CELERY_BROKER_CONNECTION_RETRY_ON_STARTUP = True

CELERY_TASK_ALWAYS_EAGER = os.getenv("CELERY_TASK_ALWAYS_EAGER", "True").lower() == "true"
CELERY_TASK_EAGER_PROPAGATES = True

# AWS
AWS_REGION = os.getenv("AWS_REGION")
AWS_ACCOUNT_ID = os.getenv("AWS_ACCOUNT_ID")
LOG_GROUP_NAME = os.getenv("LOG_GROUP_NAME")
ENVIRONMENT = os.getenv("ENVIRONMENT")

# Salesforce auth
BASE_URL = os.getenv("BASE_URL")  # e.g. https://mydomain.my.salesforce.com
API_VERSION = os.getenv("API_VERSION", "v59.0")
CLIENT_ID = os.getenv("CLIENT_ID")
CLIENT_SECRET = os.getenv("CLIENT_SECRET")
REDIRECT_URI = os.getenv("REDIRECT_URI", "http://localhost:3000/callback")
AUTH_TOKEN_ENDPOINT = os.getenv("AUTH_TOKEN_ENDPOINT")  # .../services/oauth2/authorize
ACCESS_TOKEN_ENDPOINT = os.getenv("ACCESS_TOKEN_ENDPOINT")  # .../services/oauth2/token
CALLBACK_PORT = int(os.getenv("CALLBACK_PORT", "3000"))

# Salesforce event relay
NAMED_CRED_NAME = os.getenv("NAMED_CRED_NAME")
NAMED_CRED_LABEL = os.getenv("NAMED_CRED_LABEL")
EVENT_RELAY_NAME = os.getenv("EVENT_RELAY_NAME")
EVENT_RELAY_LABEL = os.getenv("EVENT_RELAY_LABEL")
EVENT_CHANNEL_NAME = os.getenv("EVENT_CHANNEL_NAME")
PLATFORM_EVENT_NAME = os.getenv("PLATFORM_EVENT_NAME")

# Polling (seconds / attempts)
FEEDBACK_POLL_INTERVAL = float(os.getenv("FEEDBACK_POLL_INTERVAL", "180"))
FEEDBACK_MAX_ITERATIONS = int(os.getenv("FEEDBACK_MAX_ITERATIONS", "20"))
SOURCE_POLL_DELAY = float(os.getenv("SOURCE_POLL_DELAY", "5"))
SOURCE_MAX_RETRIES = int(os.getenv("SOURCE_MAX_RETRIES", "10"))
VALIDATION_SETTLE_DELAY = float(os.getenv("VALIDATION_SETTLE_DELAY", "30"))
