"""
photoindex - searchable SQLite index of AI-generated image sidecar metadata.

Sidecar JSON streams (descriptions, keywords, people, objects, scenes, EXIF)
are collected into one embedded database that is rebuilt whenever the
configuration it was built with changes.
"""

__version__ = "0.1.0"
