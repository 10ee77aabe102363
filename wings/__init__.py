"""Node daemon core: configuration, host setup, server environments, events and logging."""

__version__ = "0.1.0"