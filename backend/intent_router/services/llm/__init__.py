"""
Completion collaborator: an OpenAI-compatible chat API over HTTP.
"""
