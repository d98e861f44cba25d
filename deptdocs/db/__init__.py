"""deptdocs Database — declarative base, models, sessions and transactions."""
