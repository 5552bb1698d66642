"""SignalForge: AI news signal ingestion, publishing and scheduling."""
