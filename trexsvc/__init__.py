"""WSGI logging and metrics middleware, health check and metrics servers, runtime environments and project cloning."""

__version__ = "0.1.0"