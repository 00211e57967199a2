"""
WWE Shipping Engine

Orchestrates UPS Worldwide Economy shipments for international orders:
package planning, rate quoting, label generation, void reconciliation
and paperless customs submission.
"""

__version__ = "1.4.0"
