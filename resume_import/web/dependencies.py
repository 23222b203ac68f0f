"""Shared FastAPI dependencies: DB session and app wiring."""

from collections.abc import Generator

from fastapi import Request
from sqlalchemy.orm import Session

from resume_import.config import AppConfig
from resume_import.errors import ValidationError


def get_db(request: Request) -> Generator[Session, None, None]:
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def get_config(request: Request) -> AppConfig:
    return request.app.state.config


async def read_json_body(request: Request) -> dict:
    """Parse an optional JSON object body; an empty body is an empty dict."""
    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        body = await request.json()
    except ValueError:
        raise ValidationError("Request body must be valid JSON")
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body
