"""Services that load pipeline data and shape engine results."""
