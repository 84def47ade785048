"""Edge ingestion relay: forwards to an upstream processor or dispatches to push channels itself."""
