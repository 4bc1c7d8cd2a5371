from aigo.api.app import create_app
from aigo.api.errors import ApiError

__all__ = ["create_app", "ApiError"]
