"""
Render Cache Service package.

The service fronts the page renderer with a disk-backed response cache:
- Fresh cached responses are served without touching the renderer
- Successful renders are written through to the cache directory
- ``refreshCache=true`` forces a fresh render

Structure:
- app.main: FastAPI app, routes, and middleware wiring.
- app.adapters: HTTP client for the renderer.
- app.caching: Key normalization, disk storage, freshness and middleware.
"""
