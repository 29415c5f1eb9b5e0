# ==============================================================================
# loyalty/settlement/artifacts.py
# ------------------------------------------------------------------------------
# Artifact store for settlement reports. The engine hands over the log frame
# and keeps whatever link comes back as the run's preview link.
# ==============================================================================

import os
import logging


class ArtifactStore:
    def publish(self, run, frame):
        """Stores a report for `run` and returns an opaque link to it."""
        raise NotImplementedError


class LocalArtifactStore(ArtifactStore):
    """Writes one .xlsx report per run version into a folder."""

    def __init__(self, folder):
        self.folder = folder

    def publish(self, run, frame):
        os.makedirs(self.folder, exist_ok=True)
        filename = (f"settlement_{run.supplier_id}_{run.vertical_id}_{run.year}_{run.month:02d}_"
                    f"{run.method.value.lower()}_v{run.version}.xlsx")
        path = os.path.join(self.folder, filename)
        frame.to_excel(path, index=False, sheet_name='Settlement')
        logging.info(f"Settlement report for run {run.id} written to '{path}'.")
        return path
