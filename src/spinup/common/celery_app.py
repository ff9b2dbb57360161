from celery import Celery
from kombu.utils.url import safequote
from spinup.common import settings

SERVERS_ROOT = "spinup.workers.tasks.servers"

PROCESS_SERVER_JOB = f"{SERVERS_ROOT}.process_server_job"

SERVERS_QUEUE = f"{settings.CELERY_QUEUE_PREFIX}-servers"


def get_broker_url() -> str:
    protocol = settings.CELERY_BROKER_TYPE
    user = safequote(settings.CELERY_BROKER_USER)
    password = safequote(settings.CELERY_BROKER_PASSWORD or "")
    host = settings.CELERY_BROKER_HOST

    if password and protocol == "amqp":
        url = f"{protocol}://{user}:{password}@{host}"
    elif password:
        url = f"{protocol}://:{password}@{host}"
    else:
        url = f"{protocol}://{host}"

    if protocol == "redis":
        url += f"/{settings.REDIS_DB}"
    return url


app = Celery(
    "spinup",
    broker=get_broker_url(),
    backend=settings.CELERY_RESULT_BACKEND,
)

app.autodiscover_tasks(["spinup.workers.tasks"])


app.conf.update(
    # Jobs are acknowledged only once finished, so a crashed worker's job is
    # redelivered. The worker skips jobs whose ledger row is already terminal.
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    worker_concurrency=settings.SERVER_JOB_CONCURRENCY,
    task_time_limit=settings.SERVER_JOB_TIME_LIMIT,
    result_expires=settings.CELERY_RESULT_EXPIRES,
    task_routes={
        f"{SERVERS_ROOT}.*": {"queue": SERVERS_QUEUE},
    },
)
