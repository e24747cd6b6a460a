"""Platform concerns shared by every route: errors, logging, tenant context."""
