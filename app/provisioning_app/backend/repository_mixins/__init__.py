"""Repository mixin package used by ``ProvisioningRepository``."""

from provisioning_app.backend.repository_mixins.admin_logs import RepositoryAdminLogMixin
from provisioning_app.backend.repository_mixins.authorization import RepositoryAuthorizationMixin
from provisioning_app.backend.repository_mixins.core import RepositoryCoreMixin
from provisioning_app.backend.repository_mixins.jobs import RepositoryBulkJobsMixin
from provisioning_app.backend.repository_mixins.students import RepositoryStudentsMixin

__all__ = [
    "RepositoryAdminLogMixin",
    "RepositoryAuthorizationMixin",
    "RepositoryBulkJobsMixin",
    "RepositoryCoreMixin",
    "RepositoryStudentsMixin",
]
