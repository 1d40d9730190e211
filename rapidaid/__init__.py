"""
RapidAid Fire Alert Engine

Reconciles fire emergency alerts arriving by push delivery and by polling the
RapidAid backend into one deduplicated alert list for the station dashboard,
with sound and toast notifications fired once per new alert.
"""

__version__ = "1.0.0"
__author__ = "RapidAid Fire Dashboard Team"
