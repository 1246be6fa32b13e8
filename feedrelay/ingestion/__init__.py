"""
FeedRelay Ingestion Module
=========================

Feed fetching and content normalization.

This module handles:
- RSS/Atom download and parsing
- HTML to plain text normalization
- Media reference extraction
"""
