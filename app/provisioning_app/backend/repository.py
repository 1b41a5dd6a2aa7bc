from __future__ import annotations

from provisioning_app.backend.repository_mixins import (
    RepositoryAdminLogMixin,
    RepositoryAuthorizationMixin,
    RepositoryBulkJobsMixin,
    RepositoryCoreMixin,
    RepositoryStudentsMixin,
)
from provisioning_app.core.config import AppConfig
from provisioning_app.infrastructure.db import DatabricksSQLClient


class ProvisioningRepository(
    RepositoryCoreMixin,
    RepositoryStudentsMixin,
    RepositoryAuthorizationMixin,
    RepositoryBulkJobsMixin,
    RepositoryAdminLogMixin,
):
    def __init__(self, config: AppConfig) -> None:
        self.config = config
        self.client = DatabricksSQLClient(config)
