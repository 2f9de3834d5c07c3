"""API route handlers for RevOps."""

from revops.api.routes import ae as ae
from revops.api.routes import dashboard as dashboard
from revops.api.routes import health as health
from revops.api.routes import queues as queues
