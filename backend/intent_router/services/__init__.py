"""
Router services: completion and retrieval collaborators, routing core and
tool handlers.
"""
