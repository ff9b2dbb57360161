import os
import pathlib
from dotenv import load_dotenv

load_dotenv()


def boolean_env(key: str, default: bool = False) -> bool:
    return os.getenv(key, "1" if default else "0").lower() in ("1", "true", "yes")


# Database settings
DB_USER = os.getenv("DB_USER", "spinup")
if password_file := os.getenv("POSTGRES_PASSWORD_FILE"):
    DB_PASSWORD = pathlib.Path(password_file).read_text().strip()
else:
    DB_PASSWORD = os.getenv("DB_PASSWORD", "spinup")

DB_HOST = os.getenv("DB_HOST", "postgres")
DB_PORT = os.getenv("DB_PORT", "5432")
DB_NAME = os.getenv("DB_NAME", "spinup")


def make_db_url(
    user=DB_USER, password=DB_PASSWORD, host=DB_HOST, port=DB_PORT, db=DB_NAME
):
    return f"postgresql://{user}:{password}@{host}:{port}/{db}"


DB_URL = os.getenv("DATABASE_URL", make_db_url())


# Broker settings
CELERY_QUEUE_PREFIX = os.getenv("CELERY_QUEUE_PREFIX", "spinup")
CELERY_BROKER_TYPE = os.getenv("CELERY_BROKER_TYPE", "amqp").lower()  # amqp or redis
CELERY_BROKER_USER = os.getenv("CELERY_BROKER_USER", "spinup")
CELERY_BROKER_PASSWORD = os.getenv("CELERY_BROKER_PASSWORD", "spinup")

REDIS_HOST = os.getenv("REDIS_HOST", "redis")
REDIS_PORT = os.getenv("REDIS_PORT", "6379")
REDIS_DB = os.getenv("REDIS_DB", "0")
REDIS_URL = os.getenv("REDIS_URL", f"redis://{REDIS_HOST}:{REDIS_PORT}/{REDIS_DB}")

CELERY_BROKER_HOST = os.getenv("CELERY_BROKER_HOST", "")
if not CELERY_BROKER_HOST and CELERY_BROKER_TYPE == "amqp":
    RABBITMQ_HOST = os.getenv("RABBITMQ_HOST", "rabbitmq")
    RABBITMQ_PORT = os.getenv("RABBITMQ_PORT", "5672")
    CELERY_BROKER_HOST = f"{RABBITMQ_HOST}:{RABBITMQ_PORT}//"
elif not CELERY_BROKER_HOST:
    CELERY_BROKER_HOST = f"{REDIS_HOST}:{REDIS_PORT}"

CELERY_RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", f"db+{DB_URL}")
# How long Celery keeps finished task results (seconds)
CELERY_RESULT_EXPIRES = int(os.getenv("CELERY_RESULT_EXPIRES", 24 * 60 * 60))

# Number of lifecycle jobs a worker runs at once, across all servers
SERVER_JOB_CONCURRENCY = int(os.getenv("SERVER_JOB_CONCURRENCY", 5))
# Hard limit for a single lifecycle job (image pulls can be slow)
SERVER_JOB_TIME_LIMIT = int(os.getenv("SERVER_JOB_TIME_LIMIT", 60 * 60))


# File storage settings
# Each server gets <DATA_DIR>/<server id>/ with its data dir and startup script
DATA_DIR = pathlib.Path(os.getenv("DATA_DIR", "/srv/spinup"))


# Container runtime settings
DOCKER_HOST = os.getenv("DOCKER_HOST", "unix:///var/run/docker.sock")
DOCKER_TIMEOUT = int(os.getenv("DOCKER_TIMEOUT", 120))
CONTAINER_NAME_PREFIX = os.getenv("CONTAINER_NAME_PREFIX", "su_")
CONTAINER_RESTART_POLICY = os.getenv("CONTAINER_RESTART_POLICY", "unless-stopped")
CUSTOM_SCRIPT_MOUNT = os.getenv("CUSTOM_SCRIPT_MOUNT", "/startup/server_init.sh")
CUSTOM_DEFAULT_PORT = int(os.getenv("CUSTOM_DEFAULT_PORT", 27015))

# Grace periods (seconds) given to containers before they are killed
STOP_TIMEOUT = int(os.getenv("STOP_TIMEOUT", 15))
RESTART_TIMEOUT = int(os.getenv("RESTART_TIMEOUT", 15))
DELETE_STOP_TIMEOUT = int(os.getenv("DELETE_STOP_TIMEOUT", 10))


# Port allocation settings
PORT_RANGE_MIN = int(os.getenv("PORT_RANGE_MIN", 30000))
PORT_RANGE_MAX = int(os.getenv("PORT_RANGE_MAX", 40000))
PORT_ALLOCATION_LOCK = boolean_env("PORT_ALLOCATION_LOCK", True)
# Seconds the lock auto-expires after, and how long a job waits to get it
PORT_ALLOCATION_LOCK_TIMEOUT = int(os.getenv("PORT_ALLOCATION_LOCK_TIMEOUT", 10 * 60))
PORT_ALLOCATION_LOCK_WAIT = int(os.getenv("PORT_ALLOCATION_LOCK_WAIT", 5 * 60))


# Custom script settings
MAX_SCRIPT_SIZE = int(os.getenv("MAX_SCRIPT_SIZE", 64 * 1024))
