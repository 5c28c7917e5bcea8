"""Shared router for taskboard endpoints."""

from __future__ import annotations

from fastapi import APIRouter

api_router = APIRouter()
