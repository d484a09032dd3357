"""Dependency providers for request handlers."""

from __future__ import annotations

from fastapi import Request

from erp_client.client import ResilientClient
from erp_client.config import PipelineConfig
from erp_client.connectivity import ConnectivityMonitor
from erp_client.queue import OperationQueue


def get_client(request: Request) -> ResilientClient:
    """Read the pipeline client from FastAPI app state."""
    return request.app.state.erp_client


def get_config(request: Request) -> PipelineConfig:
    """Read config from FastAPI app state."""
    return get_client(request).config


def get_queue(request: Request) -> OperationQueue:
    """Read the operation queue from FastAPI app state."""
    return get_client(request).queue


def get_connectivity(request: Request) -> ConnectivityMonitor | None:
    """Read the connectivity monitor from FastAPI app state."""
    return getattr(request.app.state, "erp_client_connectivity", None)
