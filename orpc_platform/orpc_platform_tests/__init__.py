"""
backend_service package

This package contains the backend scaffold for the oRPC service.
It includes:

- Environment loading and validation (`env.py`)
- SQLAlchemy persistence handle (`db.py`)
- Auth provider setup (`auth.py`)
- FastAPI application and process entry point (`main.py`)
- Pydantic schemas (`schemas.py`)

Started with `orpc-backend` or `python -m orpc_platform.orpc_platform.backend_service`.
"""
