from .authz import Base, User, UserRoleAssignment, UserPermissionOverride  # noqa: F401
from .audit import AuditLog  # noqa: F401
from .sequence import SequenceRecord  # noqa: F401
from .provisioning import ProvisioningRequest  # noqa: F401
