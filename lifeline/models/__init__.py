from .analysis_job import AnalysisJob
from .audit import AuditLog
from .error_log import ErrorLog
from .investigation import Investigation
from .message import CaseMessage
from .security_log import SecurityLog
from .user import User

__all__ = [
    "AnalysisJob",
    "AuditLog",
    "CaseMessage",
    "ErrorLog",
    "Investigation",
    "SecurityLog",
    "User",
]
