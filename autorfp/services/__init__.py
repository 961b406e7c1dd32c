"""
services/ — Pipeline business logic.

Routers and the scheduler call into these modules; nothing here imports a router.
"""
