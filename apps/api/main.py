"""Thin API launcher.

This is the uvicorn entrypoint. All application logic lives in the tokengate package.
Run with: uvicorn main:app --reload

Note: The app instance is created here (not in tokengate.app) to avoid import-time
side effects. This allows tests to import create_app without requiring all
environment variables to be configured.
"""

from tokengate.app import build_app

app = build_app()

__all__ = ["app"]
