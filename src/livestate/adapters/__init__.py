"""
Infrastructure Adapters

Integrations with web frameworks. ``fasthtml`` mounts the LiveState
endpoints on a FastHTML app.
"""
