"""Per-job output directories under the application runtime directory."""

import os
from typing import List


class OutputDirectoryStore:
    """Each job writes its translated files into ``<base>/<job id>``."""

    def __init__(self, base_dir: str):
        self._base_dir = base_dir
        os.makedirs(self._base_dir, exist_ok=True)

    @property
    def base_dir(self) -> str:
        return self._base_dir

    def get_job_dir(self, job_id: str) -> str:
        """Get or create directory for a job's output files."""
        job_dir = os.path.join(self._base_dir, job_id)
        os.makedirs(job_dir, exist_ok=True)
        return job_dir

    def list_outputs(self, job_id: str) -> List[str]:
        job_dir = os.path.join(self._base_dir, job_id)
        if not os.path.isdir(job_dir):
            return []
        return sorted(os.listdir(job_dir))
