"""
Adapters package for the Render Cache Service.

Contains the HTTP client wrapper for the downstream renderer. Errors are
mapped to shared errors.
"""

from .renderer_client import RendererClient, RenderResult
