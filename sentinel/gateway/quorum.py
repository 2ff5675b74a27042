"""
Multi-gateway verification.

A CID counts as available when at least one gateway serves it. Every
gateway is always probed so the per-gateway breakdown is complete, and the
whole fan-out is bounded by a hard deadline: probes still running when it
passes are recorded as timeouts.
"""

import time
import logging
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Dict, List, Optional

from sentinel.constants import DEFAULT_GATEWAYS, PROBE_DEADLINE_GRACE, PROBE_TIMEOUT_ERROR
from sentinel.gateway.probe import GatewayProbe
from sentinel.gateway.verification_metadata import ProbeResult, VerificationResult


class QuorumVerifier:
    """Fans a CID out to every configured gateway and aggregates the answers."""

    def __init__(self, probe: GatewayProbe, gateways: Optional[List[str]] = None):
        self.probe = probe
        self.gateways = list(gateways or DEFAULT_GATEWAYS)
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def verify(self, cid: str, gateways: Optional[List[str]] = None) -> VerificationResult:
        """
        Probe all gateways concurrently.

        Args:
            cid: Content identifier to check
            gateways: Override the configured gateway list

        Returns:
            VerificationResult with available = (available_count >= 1)
        """
        gateways = list(gateways or self.gateways)
        if not gateways:
            return VerificationResult(cid=cid, available=False)

        deadline = self.probe.timeout + PROBE_DEADLINE_GRACE
        start_time = time.time()
        results: Dict[str, ProbeResult] = {}

        executor = ThreadPoolExecutor(max_workers=len(gateways), thread_name_prefix="probe")
        try:
            future_to_gateway = {
                executor.submit(self.probe.probe, cid, gateway): gateway for gateway in gateways
            }
            done, not_done = wait(future_to_gateway, timeout=deadline)

            for future in done:
                gateway = future_to_gateway[future]
                try:
                    results[gateway] = future.result()
                except Exception as e:
                    # GatewayProbe never raises; guard against custom probes that do
                    self._logger.error(f"Probe of {cid} on {gateway} raised: {e}")
                    results[gateway] = ProbeResult.failure(gateway, str(e))

            for future in not_done:
                gateway = future_to_gateway[future]
                future.cancel()
                results[gateway] = ProbeResult.failure(gateway, PROBE_TIMEOUT_ERROR, deadline)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        # Keep the configured gateway order in the breakdown
        ordered = {gateway: results[gateway] for gateway in gateways}
        available_count = sum(1 for result in ordered.values() if result.available)

        self._logger.info(
            f"Verified {cid}: available on {available_count}/{len(gateways)} gateways "
            f"({time.time() - start_time:.2f}s)"
        )
        return VerificationResult(cid=cid, available=available_count >= 1, gateway_results=ordered)
