"""
Feature modules live under this package.

Each module owns its models, schemas, service functions and blueprint, and reuses
platform primitives (auth, RBAC, audit, storage, mailer, DB session).
"""
