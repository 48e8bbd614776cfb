"""State layer.

Runtime events, the reconnect policy, and the in-memory bot state that
replaces process-wide status flags.
"""
