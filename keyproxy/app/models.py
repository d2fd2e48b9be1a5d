"""
Data Models Module

Pydantic models for the JSON bodies the proxy produces itself. Relayed
upstream bodies are passed through untouched and have no model.
"""

from typing import List

from pydantic import BaseModel, Field


# ============================================================================
# Health Check Models
# ============================================================================

class HealthResponse(BaseModel):
    """Health check response model."""
    ok: bool = Field(True, description="Service liveness flag")
    routes: List[str] = Field(..., description="Declared provider route prefixes")


# ============================================================================
# Error Models
# ============================================================================

class ErrorResponse(BaseModel):
    """Error body for upstream transport failures and unhandled errors."""
    error: str = Field(..., description="Human-readable error message")
