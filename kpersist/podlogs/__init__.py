"""Pod log persistence for kpersist.

Submodules:
    gate      -- RetryGate: single-slot retry/stop notification channel.
    pipeline  -- LogStreamPipeline: ``kubectl logs`` piped through an ANSI filter.
    follower  -- PodLogFollower: one worker per pod, retries until the pod is gone.
"""

from kpersist.podlogs.follower import PodLogFollower
from kpersist.podlogs.gate import RetryGate
from kpersist.podlogs.pipeline import LogStreamPipeline

__all__ = ["LogStreamPipeline", "PodLogFollower", "RetryGate"]
