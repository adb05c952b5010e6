from .app import create_app
from .auth import AuthorizationStore, GoogleOAuthClient, GoogleTokenSet
from .exceptions import AuthorizationError, NotAuthorizedError, OAuthExchangeError, TokenRefreshError
from .sessions import IDLE_TTL_SECONDS, IdleScheduler, Session, SessionManager, SessionState
from .settings import GatewaySettings
from .tasks_api import GoogleTasksClient, Task, TaskList
from .tools import TasksToolset, create_server

__all__ = [
    "IDLE_TTL_SECONDS",
    "AuthorizationError",
    "AuthorizationStore",
    "GatewaySettings",
    "GoogleOAuthClient",
    "GoogleTasksClient",
    "GoogleTokenSet",
    "IdleScheduler",
    "NotAuthorizedError",
    "OAuthExchangeError",
    "Session",
    "SessionManager",
    "SessionState",
    "Task",
    "TaskList",
    "TasksToolset",
    "TokenRefreshError",
    "create_app",
    "create_server",
]
