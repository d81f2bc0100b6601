"""
Feature modules live under this package.

Each module owns its models, service functions and blueprints (`public.py` for
anonymous endpoints, `admin.py` for /admin endpoints), while reusing platform
primitives (auth, RBAC, audit, rate limiting, storage, DB session).
"""
