"""RevOps pipeline risk, compliance and forecast engine."""
