"""HTTP API for the RevOps dashboards."""
