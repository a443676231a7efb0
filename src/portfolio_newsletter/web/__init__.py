# ABOUTME: Web package for the newsletter FastAPI application.
# ABOUTME: Contains the app factory, dependencies, middleware and routes.
