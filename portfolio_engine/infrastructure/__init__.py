"""
Infrastructure layer package.

Contains concrete implementations (adapters) of the ports
defined in the domain layer: stores, market data and model clients.
"""
