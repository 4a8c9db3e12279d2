"""
FunnelForge API Module

FastAPI backend providing REST endpoints for:
- Funnel creation and resumable page generation
- Standalone page serving with A/B variant assignment
- Telemetry ingest and funnel analytics
- Experiments, improvements and experiment ideas
"""
