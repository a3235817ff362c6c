"""
Example scripts for the AI photo editor.

Shows how a host application drives the editing operations through the
method-channel boundary.
"""
