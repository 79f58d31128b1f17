"""
Common Components

Infrastructure shared by the review scheduling backend: logging,
errors, configuration, weighted scoring, caching, persistence and
background task wiring.
"""
