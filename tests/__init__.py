"""
Tile conversion test suite

Structure:
- unit/: pyramid geometry, codecs, LUT conversion, identity tags, config, pipeline
- integration/: the FastAPI front end driving the full pipeline
"""
