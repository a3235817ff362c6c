"""
AI Photo Editor

Backend for a mobile photo editor: background removal, filters, object
insertion and removal driven by on-device models, with deterministic
fallbacks when a model is unavailable.
"""

__version__ = "1.0.0"
