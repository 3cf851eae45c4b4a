"""
Sideman
Cross-source credits lookup and discography reconciliation for the track
that is currently playing.
"""

__version__ = '0.1.0'
