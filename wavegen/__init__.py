"""
wavegen: seamlessly looping gradient wave videos.

A layered scene (blurred gradient blobs, weather, logo, text) is animated so
that it repeats exactly every `duration` seconds, then recorded in real time
together with a trimmed, looped audio segment.
"""

__version__ = "0.1.0"
