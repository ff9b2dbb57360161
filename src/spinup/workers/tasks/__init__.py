"""
Import sub-modules so Celery can register their @app.task decorators.
"""

from spinup.workers.tasks import servers  # noqa

__all__ = ["servers"]
