"""deptdocs Engine — errors, configuration, audit logging, request context."""
