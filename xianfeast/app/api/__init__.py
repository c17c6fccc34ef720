"""API routers."""

from xianfeast.app.api.admin import router as admin_router

__all__ = ["admin_router"]
