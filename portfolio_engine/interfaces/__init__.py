"""
Interfaces layer package.

Contains FastAPI routers, Pydantic request/response schemas
and the background scheduler. No business logic belongs here.
Routes and jobs call use cases and return their results.
"""
