"""SPA fallback dev proxy in front of esbuild's serve facility."""

__version__ = "1.0.0"
