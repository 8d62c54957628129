"""
Domain layer package.

Contains business rules: entities, domain services and port interfaces.
No framework imports. All IO goes through ports.
"""
