"""PEroxide core scanning components.

This package contains the scan data model, the in-memory scan registry, the
detector interface and built-in indicator rules, header sniffing, verdict
aggregation, and the progress notifier that reads scan logs back out.
"""
