from spinup.common.db.models.base import Base
from spinup.common.db.models.servers import (
    CustomScript,
    Server,
    ServerPayload,
    ServerStatus,
)
from spinup.common.db.models.jobs import (
    Job,
    JobPayload,
    JobStatus,
    JobType,
)

__all__ = [
    "Base",
    # Servers
    "Server",
    "ServerStatus",
    "ServerPayload",
    "CustomScript",
    # Jobs
    "Job",
    "JobStatus",
    "JobType",
    "JobPayload",
]
