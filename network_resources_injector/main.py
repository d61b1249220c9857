from fastapi import FastAPI

from . import __version__
from .exceptions import register_exception_handlers
from .routers import mutate
from .webhook.mutate import MutationEngine


def create_app(engine: MutationEngine, read_timeout: float = mutate.DEFAULT_READ_TIMEOUT) -> FastAPI:
    """Application serving exactly one route, ``POST /mutate``.

    ``read_timeout`` bounds how long a client may take to send the request body.
    """
    app = FastAPI(
        title="Network Resources Injector",
        version=__version__,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.engine = engine
    app.state.read_timeout = read_timeout

    register_exception_handlers(app)
    app.include_router(mutate.router)
    return app
