# Package init for app.models
from .logging import AppErrorLog as AppErrorLog
from .photo import Photo as Photo
from .user import Base as Base  # explicit re-export
from .user import User as User
from .user import UserSession as UserSession
