"""
storage — Persistence boundary for the alert engine.

Sub-modules:
    base       — store protocols consumed by the core
    memory     — in-process implementations (tests, local development)
    sql        — async SQLAlchemy implementations (production)
    tables     — ORM table definitions
    normalize  — legacy field-name normalisation into canonical shapes
"""
