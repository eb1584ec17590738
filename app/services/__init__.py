"""
Services.

Chain access and the event ingestion pipeline.
"""
