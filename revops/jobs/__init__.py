"""Background jobs for RevOps."""

from revops.jobs.pipeline_digest_job import run_pipeline_digest_job

__all__ = ["run_pipeline_digest_job"]
