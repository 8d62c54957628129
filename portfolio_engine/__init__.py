"""
Portfolio Engine: transaction settlement and portfolio optimization core.

Application package root. This is a modular monolith using
hexagonal architecture (ports & adapters) with domain-driven design.

Bounded contexts:
    - portfolio: Holdings ledger, transaction settlement, optimization lifecycle.

Layers:
    - domain: Business rules, entities, ports (ABCs), errors, domain services.
    - application: Use cases, DTOs, orchestration.
    - infrastructure: Adapters (stores, market oracle, model clients).
    - interfaces: FastAPI routers, Pydantic schemas, scheduler.
    - shared: Cross-cutting concerns (errors, rate limiting, logging, locks).
"""
