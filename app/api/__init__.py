# app/api/__init__.py
"""
API package.

- 路由按功能拆在 app/api/routers/*，由 app/main.py 统一挂载
- 这里不做重导出
"""

__all__ = []
