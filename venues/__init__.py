"""
Venue-side logic: pool registry, price reads, sizing and settlement encoding.
"""
