"""HTTP surface: FastAPI app, routes and gate dependencies."""
