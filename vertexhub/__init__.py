"""
VertexHub - Claude Code on top of Google Antigravity.

Starts and stops the Antigravity proxy, writes the settings Claude Code
reads, checks proxy health, and forwards account-management commands.
"""

__version__ = "0.1.0"
