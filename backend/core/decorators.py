import hmac
from functools import wraps
from fastapi import Request, HTTPException, status
from core import config
from core.logger import Logger

logger = Logger(__name__)


def cron_secret_required(f):
    """
    Decorator for routes called by the external scheduler.
    Expects 'Authorization: Bearer <CRON_SECRET>'; an unset secret refuses every call.
    """
    @wraps(f)
    async def wrapper(*args, **kwargs):
        request = kwargs.get("request") or next((a for a in args if isinstance(a, Request)), None)
        if not request:
            raise RuntimeError("Request object not found. Ensure route includes 'request: Request'.")

        expected = config.CRON_SECRET
        if not expected:
            logger.warning("Cron request refused: CRON_SECRET is not configured")
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

        auth_header = request.headers.get("Authorization") or ""
        if not auth_header.startswith("Bearer "):
            logger.warning("Unauthorized cron request (missing token)")
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

        token = auth_header[len("Bearer "):]
        if not hmac.compare_digest(token.encode(), expected.encode()):
            logger.warning("Unauthorized cron request (bad secret)")
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

        return await f(*args, **kwargs)
    return wrapper
