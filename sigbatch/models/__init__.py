from .user import User  # noqa: F401
from .signature import Signature  # noqa: F401
from .apikey import ApiKey  # noqa: F401
from .export_job import ExportJob  # noqa: F401
from .mail_log import MailLog  # noqa: F401
