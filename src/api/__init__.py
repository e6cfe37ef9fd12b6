"""FastAPI routes for the agent performance dashboard.

This module contains:
- Dashboard endpoints over DashboardViewModel
- Pipeline wiring from Settings
- Request models
"""

from src.api.routes import (
    SelectionRequest,
    ViewModeRequest,
    app,
    create_app,
    create_view_model,
)

__all__ = [
    # Request models
    "SelectionRequest",
    "ViewModeRequest",
    # Wiring
    "create_view_model",
    # App factory and instance
    "app",
    "create_app",
]
