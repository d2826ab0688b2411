"""
Terminal progress for deployments.

``TqdmObserver`` turns orchestrator stage events into a tqdm bar; log
messages are written through ``tqdm.write`` so they do not break the bar.
"""

import logging
from typing import Any, Dict, Optional

from tqdm import tqdm

from core.services.deployment import DeploymentState

# Stages that advance the bar, in run order
STAGES = (
    DeploymentState.PUBLISHER_READY.value,
    DeploymentState.SOLUTION_READY.value,
    DeploymentState.ENTITIES_CREATED.value,
    DeploymentState.ATTRIBUTES_CREATED.value,
    DeploymentState.RELATIONSHIPS_CREATED.value,
    DeploymentState.COMPLETE.value,
)


class TqdmObserver:
    """Deployment observer rendering a stage progress bar."""

    def __init__(self, disable: bool = False, min_level: int = logging.WARNING):
        self._bar: Optional[tqdm] = None
        self._disable = disable
        self._min_level = min_level

    def _ensure_bar(self) -> tqdm:
        if self._bar is None:
            self._bar = tqdm(total=len(STAGES), desc="Deploying", unit="stage", disable=self._disable)
        return self._bar

    def on_progress(self, stage: str, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        bar = self._ensure_bar()
        if stage in STAGES:
            bar.update(1)
            bar.set_postfix_str(stage)
        elif stage == "finished" or stage in (DeploymentState.FAILED.value, DeploymentState.CANCELLED.value):
            bar.set_postfix_str(stage)
            self.close()

    def on_log(self, level: int, message: str) -> None:
        if level >= self._min_level and not self._disable:
            tqdm.write(f"{logging.getLevelName(level)}: {message}")

    def close(self) -> None:
        if self._bar is not None:
            self._bar.close()
            self._bar = None
