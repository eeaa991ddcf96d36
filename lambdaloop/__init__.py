"""Lifecycle-aware AWS Lambda custom runtime, Runtime API client and JSON logger."""

__version__ = "0.1.0"
__all__ = ["bootstrap", "context", "eventloop", "log", "runtimeapi"]