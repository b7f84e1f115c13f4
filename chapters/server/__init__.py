"""HTTP surface: FastAPI app with the cron trigger and health check."""
