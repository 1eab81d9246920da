# Reference Server
#
# FastAPI implementation of the sync protocol's server side.

from .main import create_app

__all__ = ["create_app"]
