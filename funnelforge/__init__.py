"""
FunnelForge

Generates multi-page sales funnels from a product brief, bundles each page
into a standalone self-reporting HTML document, ingests visitor telemetry,
and runs A/B experiments against live traffic.
"""

__version__ = "0.1.0"
