from .client import (
    AuthClient,
    AuthAttempt,
    AuthState,
)
from .config import (
    ClientConfig,
    SecretResolver,
)
from .session import Session
from .transport import AuthTransport
