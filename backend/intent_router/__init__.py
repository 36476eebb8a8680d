"""
Intent router: picks chat, retrieval or config handling for each request.
"""
__version__ = "1.0.0"
