"""
oRPC backend - HTTP entry point
"""
from contextlib import asynccontextmanager
from typing import Optional
import logging
import sys

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import ArgumentError, NoSuchModuleError

from .auth import AuthProvider, create_auth
from .db import create_database
from .env import Diagnostic, Env, EnvValidationError, ErrorKind, get_env
from .schemas import HelloResponse

logger = logging.getLogger(__name__)

HOST = "0.0.0.0"


def configure_logging(env: Env) -> None:
    logging.basicConfig(
        level=logging.DEBUG if env.is_development else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


def create_app(env: Env, auth: Optional[AuthProvider] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        env: Validated environment
        auth: Auth provider handle, exposed on ``app.state.auth`` for routes

    Returns:
        FastAPI: Application that answers every request with a hello payload
    """

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        logger.info(f"Server running on http://localhost:{env.PORT}")
        logger.info(f"Environment: {env.NODE_ENV}")
        yield
        if auth is not None:
            auth.database.dispose()

    app = FastAPI(
        title="oRPC backend",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.env = env
    app.state.auth = auth

    async def hello(request: Request) -> JSONResponse:
        # Echo the request target as received, without percent-decoding
        raw_path = request.scope.get("raw_path")
        path = raw_path.decode("latin-1") if raw_path else request.url.path
        if request.url.query:
            path = f"{path}?{request.url.query}"
        payload = HelloResponse(
            message="Hello from oRPC backend!",
            path=path,
            method=request.method,
        )
        return JSONResponse(payload.model_dump())

    # No method filter: every method on every path gets the hello payload
    app.router.add_route("/{full_path:path}", hello, include_in_schema=False)
    return app


def _exit_with(error: EnvValidationError) -> None:
    print(f"\n{error}", file=sys.stderr)
    sys.exit(1)


def run() -> None:
    """
    Start the server.

    The environment is validated before anything else; on failure the
    diagnostic is written to stderr and the process exits with status 1.
    """
    try:
        env = get_env()
    except EnvValidationError as e:
        _exit_with(e)

    configure_logging(env)
    try:
        database = create_database(env)
    except (ArgumentError, NoSuchModuleError, ImportError) as e:
        _exit_with(EnvValidationError([
            Diagnostic("DATABASE_URL", str(e), ErrorKind.TYPE_COERCION_FAILURE)
        ]))
    auth = create_auth(database)
    app = create_app(env, auth)
    uvicorn.run(app, host=HOST, port=env.PORT, log_config=None)


if __name__ == "__main__":
    run()
