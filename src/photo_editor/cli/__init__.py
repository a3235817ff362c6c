"""
Command-line interface for the photo editor.

Runs single operations or serves method-channel calls over stdin/stdout.
"""

from .editor_cli import EditorCLI

__all__ = [
    'EditorCLI'
]
