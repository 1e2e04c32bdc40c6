from larek.app import create_app
from larek.config import Settings

__all__ = ["Settings", "create_app"]
