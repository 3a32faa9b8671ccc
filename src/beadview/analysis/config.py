# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Size-adaptive configuration for graph analysis.

Phase-2 metrics have very different costs. Betweenness is O(V*E) and cycle
enumeration can be exponential, while PageRank and HITS are near-linear. The
config chosen for a graph keeps phase 2 bounded by turning the expensive
metrics into sampled approximations, or skipping them, as the graph grows.

Environment overrides:
- BEADVIEW_SKIP_PHASE2=1 disables phase 2 entirely
- BEADVIEW_PHASE2_TIMEOUT_S=<seconds> sets the advisory phase-2 time budget
"""

import logging
import os
from dataclasses import dataclass, replace
from typing import List, Mapping, Optional

logger = logging.getLogger(__name__)

ENV_SKIP_PHASE2 = "BEADVIEW_SKIP_PHASE2"
ENV_PHASE2_TIMEOUT = "BEADVIEW_PHASE2_TIMEOUT_S"


class BetweennessMode:
    """How betweenness centrality is computed."""

    EXACT = "exact"
    APPROXIMATE = "approximate"
    SKIP = "skip"


@dataclass(frozen=True)
class AnalysisConfig:
    """Which phase-2 metrics to compute, and how.

    Attributes:
        compute_pagerank: Run PageRank.
        compute_betweenness: Run betweenness (see betweenness_mode).
        betweenness_mode: Exact, sampled, or skipped.
        betweenness_sample_size: Pivot count for sampled betweenness.
        compute_eigenvector: Run eigenvector centrality.
        compute_hits: Run HITS hub/authority.
        compute_critical_path: Run critical-path heights.
        compute_cycles: Enumerate elementary cycles.
        max_cycles_to_store: Cap on reported cycles.
        phase2_timeout_s: Advisory time budget; exceeding it is logged only.
        skip_phase2: Do not start phase 2 at all.
    """

    compute_pagerank: bool = True
    compute_betweenness: bool = True
    betweenness_mode: str = BetweennessMode.EXACT
    betweenness_sample_size: int = 0
    compute_eigenvector: bool = True
    compute_hits: bool = True
    compute_critical_path: bool = True
    compute_cycles: bool = True
    max_cycles_to_store: int = 100
    phase2_timeout_s: float = 2.0
    skip_phase2: bool = False

    def skipped_metrics(self) -> List[str]:
        """Names of phase-2 metrics this config will not compute."""
        if self.skip_phase2:
            return list(PHASE2_METRICS)
        skipped = []
        if not self.compute_pagerank:
            skipped.append("pagerank")
        if not self.compute_betweenness or self.betweenness_mode == BetweennessMode.SKIP:
            skipped.append("betweenness")
        if not self.compute_eigenvector:
            skipped.append("eigenvector")
        if not self.compute_hits:
            skipped.extend(["hub", "authority"])
        if not self.compute_critical_path:
            skipped.append("critical_path")
        if not self.compute_cycles:
            skipped.append("cycles")
        return skipped


PHASE2_METRICS = (
    "pagerank",
    "betweenness",
    "eigenvector",
    "hub",
    "authority",
    "critical_path",
    "cycles",
)


def full_analysis_config() -> AnalysisConfig:
    """Everything, exact."""
    return AnalysisConfig(phase2_timeout_s=30.0)


def no_phase2_config() -> AnalysisConfig:
    """Phase 1 only."""
    return AnalysisConfig(
        compute_pagerank=False,
        compute_betweenness=False,
        betweenness_mode=BetweennessMode.SKIP,
        compute_eigenvector=False,
        compute_hits=False,
        compute_critical_path=False,
        compute_cycles=False,
        skip_phase2=True,
    )


def config_for_size(node_count: int, edge_count: int) -> AnalysisConfig:
    """Pick an analysis config for a graph of the given size.

    Args:
        node_count: Number of issues.
        edge_count: Number of blocking edges between existing issues.

    Returns:
        AnalysisConfig with environment overrides applied.
    """
    density = 0.0
    if node_count > 1:
        density = edge_count / float(node_count * (node_count - 1))

    if node_count < 500:
        config = AnalysisConfig(phase2_timeout_s=2.0)
    elif node_count < 2000:
        if density < 0.01:
            config = AnalysisConfig(
                betweenness_mode=BetweennessMode.APPROXIMATE,
                betweenness_sample_size=100,
                phase2_timeout_s=3.0,
            )
        else:
            config = AnalysisConfig(
                compute_betweenness=False,
                betweenness_mode=BetweennessMode.SKIP,
                phase2_timeout_s=3.0,
            )
    else:
        config = AnalysisConfig(
            betweenness_mode=BetweennessMode.APPROXIMATE,
            betweenness_sample_size=50,
            compute_hits=density < 0.001,
            compute_cycles=False,
            phase2_timeout_s=5.0,
        )

    return apply_env_overrides(config)


def apply_env_overrides(
    config: AnalysisConfig, environ: Optional[Mapping[str, str]] = None
) -> AnalysisConfig:
    """Apply BEADVIEW_* environment overrides to a config.

    Args:
        config: Base config.
        environ: Mapping to read from (defaults to os.environ).

    Returns:
        A new AnalysisConfig, or the same one if nothing applies.
    """
    if environ is None:
        environ = os.environ

    skip = environ.get(ENV_SKIP_PHASE2, "").strip().lower()
    if skip in ("1", "true", "yes"):
        logger.debug(f"{ENV_SKIP_PHASE2} set, disabling phase 2")
        return replace(no_phase2_config(), max_cycles_to_store=config.max_cycles_to_store)

    timeout_raw = environ.get(ENV_PHASE2_TIMEOUT, "").strip()
    if timeout_raw:
        try:
            timeout = float(timeout_raw)
        except ValueError:
            logger.warning(f"Ignoring invalid {ENV_PHASE2_TIMEOUT}={timeout_raw!r}")
        else:
            if timeout > 0:
                config = replace(config, phase2_timeout_s=timeout)
            else:
                logger.warning(f"Ignoring non-positive {ENV_PHASE2_TIMEOUT}={timeout_raw!r}")

    return config
