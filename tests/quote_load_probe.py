# quote_load_probe.py
"""
Concurrent load probe for the delegate HTTP API.

Seeds a few markets with rules as the owner, then fires a mix of quote
requests (and optionally rule churn) at a fixed rate, reporting latency
percentiles and error breakdowns.

    python tests/quote_load_probe.py --url http://localhost:5000 --owner owner --rate 200
"""

import argparse
import asyncio
import logging
import random
import statistics
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import aiohttp

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(message)s'
)
logger = logging.getLogger(__name__)

MARKETS = [("WETH", "DAI"), ("DAI", "WETH"), ("WBTC", "USDC")]


@dataclass
class ProbeResult:
    """Outcome of one request."""
    kind: str
    duration_ms: float
    success: bool
    status_code: Optional[int] = None
    error: Optional[str] = None


@dataclass
class ProbeMetrics:
    start_time: float = field(default_factory=time.time)
    end_time: Optional[float] = None
    latencies: Dict[str, List[float]] = field(default_factory=lambda: defaultdict(list))
    failures: Dict[str, int] = field(default_factory=lambda: defaultdict(int))
    status_codes: Dict[int, int] = field(default_factory=lambda: defaultdict(int))
    peak_in_flight: int = 0

    def add(self, result: ProbeResult):
        if result.status_code is not None:
            self.status_codes[result.status_code] += 1
        if result.success:
            self.latencies[result.kind].append(result.duration_ms)
        else:
            self.failures[result.error or "unknown"] += 1

    def summary(self) -> Dict:
        duration = (self.end_time or time.time()) - self.start_time
        per_kind = {}
        for kind, samples in self.latencies.items():
            ordered = sorted(samples)
            per_kind[kind] = {
                "count": len(ordered),
                "mean_ms": round(statistics.mean(ordered), 2),
                "p50_ms": round(ordered[len(ordered) // 2], 2),
                "p99_ms": round(ordered[min(len(ordered) - 1, int(len(ordered) * 0.99))], 2),
                "max_ms": round(ordered[-1], 2),
            }
        total_ok = sum(len(v) for v in self.latencies.values())
        total_failed = sum(self.failures.values())
        return {
            "duration_seconds": round(duration, 2),
            "succeeded": total_ok,
            "failed": total_failed,
            "requests_per_second": round((total_ok + total_failed) / max(duration, 1), 2),
            "peak_in_flight": self.peak_in_flight,
            "by_kind": per_kind,
            "failures": dict(self.failures),
            "status_codes": dict(self.status_codes),
        }


class QuoteLoadProbe:
    """Async driver for the delegate API."""

    def __init__(self, base_url: str, owner: str, max_connections: int = 100,
                 timeout: int = 30, churn: bool = False):
        self.base_url = base_url.rstrip("/")
        self.owner = owner
        self.max_connections = max_connections
        self.timeout = timeout
        self.churn = churn
        self.metrics = ProbeMetrics()
        self.session: Optional[aiohttp.ClientSession] = None
        self.semaphore: Optional[asyncio.Semaphore] = None
        self.in_flight = 0
        self.created_ids: List[int] = []

    async def __aenter__(self):
        self.session = aiohttp.ClientSession(
            connector=aiohttp.TCPConnector(limit=self.max_connections),
            timeout=aiohttp.ClientTimeout(total=self.timeout),
        )
        self.semaphore = asyncio.Semaphore(self.max_connections)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self.session:
            await self.session.close()

    async def _request(self, kind: str, method: str, path: str, **kwargs) -> ProbeResult:
        start = time.time()
        async with self.semaphore:
            self.in_flight += 1
            self.metrics.peak_in_flight = max(self.metrics.peak_in_flight, self.in_flight)
            try:
                async with self.session.request(method, f"{self.base_url}{path}", **kwargs) as response:
                    body = await response.json(content_type=None)
                    ok = response.status < 400
                    if ok and kind == "create":
                        self.created_ids.append(body["rule_id"])
                    return ProbeResult(
                        kind=kind,
                        duration_ms=(time.time() - start) * 1000,
                        success=ok,
                        status_code=response.status,
                        error=None if ok else body.get("error_code", f"HTTP {response.status}"),
                    )
            except asyncio.TimeoutError:
                return ProbeResult(kind, (time.time() - start) * 1000, False, error="Timeout")
            except aiohttp.ClientError as e:
                return ProbeResult(kind, (time.time() - start) * 1000, False, error=type(e).__name__)
            finally:
                self.in_flight -= 1

    def _random_rule(self) -> Dict:
        sender_token, signer_token = random.choice(MARKETS)
        signer_amount = random.randint(50, 500)
        rate = random.uniform(4.0, 7.0)
        return {
            "sender_token": sender_token,
            "signer_token": signer_token,
            "sender_amount": int(signer_amount * rate),
            "signer_amount": signer_amount,
        }

    async def create_rule(self) -> ProbeResult:
        return await self._request("create", "POST", "/rule", json=self._random_rule(),
                                   headers={"X-Caller": self.owner})

    async def delete_rule(self) -> ProbeResult:
        if not self.created_ids:
            return await self.create_rule()
        rule_id = self.created_ids.pop(random.randrange(len(self.created_ids)))
        return await self._request("delete", "DELETE", f"/rule/{rule_id}",
                                   headers={"X-Caller": self.owner})

    async def quote(self) -> ProbeResult:
        sender_token, signer_token = random.choice(MARKETS)
        choice = random.random()
        if choice < 0.4:
            params = {"sender_amount": random.randint(1, 5000),
                      "sender_token": sender_token, "signer_token": signer_token}
            return await self._request("signer_side", "GET", "/quote/signer-side", params=params)
        if choice < 0.8:
            params = {"signer_amount": random.randint(1, 1000),
                      "sender_token": sender_token, "signer_token": signer_token}
            return await self._request("sender_side", "GET", "/quote/sender-side", params=params)
        params = {"sender_token": sender_token, "signer_token": signer_token}
        return await self._request("max", "GET", "/quote/max", params=params)

    async def seed(self, rules_per_market: int):
        logger.info(f"Seeding {rules_per_market * len(MARKETS)} rules")
        results = await asyncio.gather(*[self.create_rule() for _ in range(rules_per_market * len(MARKETS))])
        for result in results:
            self.metrics.add(result)

    async def _one(self):
        if self.churn and random.random() < 0.1:
            op = random.choice([self.create_rule, self.delete_rule])
            return await op()
        return await self.quote()

    async def run_constant_rate(self, rate_per_second: int, duration_seconds: int):
        logger.info(f"Probing at {rate_per_second} req/sec for {duration_seconds}s (churn={self.churn})")
        interval = 1.0 / rate_per_second
        deadline = time.time() + duration_seconds
        tasks = []

        while time.time() < deadline:
            tasks.append(asyncio.create_task(self._one()))
            await asyncio.sleep(interval)

        for result in await asyncio.gather(*tasks):
            self.metrics.add(result)
        self.metrics.end_time = time.time()


def print_summary(metrics: ProbeMetrics):
    summary = metrics.summary()
    print("\n" + "=" * 72)
    print("DELEGATE QUOTE LOAD PROBE")
    print("=" * 72)
    print(f"Duration: {summary['duration_seconds']}s  "
          f"ok={summary['succeeded']:,}  failed={summary['failed']:,}  "
          f"rps={summary['requests_per_second']:,.2f}  peak in flight={summary['peak_in_flight']}")
    for kind, stats in sorted(summary["by_kind"].items()):
        print(f"  {kind:<12} n={stats['count']:<7} mean={stats['mean_ms']}ms "
              f"p50={stats['p50_ms']}ms p99={stats['p99_ms']}ms max={stats['max_ms']}ms")
    if summary["failures"]:
        print("Failures:")
        for error, count in summary["failures"].items():
            print(f"  {error}: {count}")
    print("Status codes:", summary["status_codes"])
    print("=" * 72)


async def main():
    parser = argparse.ArgumentParser(description="Load probe for the delegate API")
    parser.add_argument("--url", default="http://localhost:5000", help="API base URL")
    parser.add_argument("--owner", default="owner", help="Owner address sent as X-Caller")
    parser.add_argument("--rate", type=int, default=100, help="Requests per second")
    parser.add_argument("--duration", type=int, default=30, help="Probe duration in seconds")
    parser.add_argument("--connections", type=int, default=100, help="Max concurrent connections")
    parser.add_argument("--seed-rules", type=int, default=20, help="Rules created per market before probing")
    parser.add_argument("--churn", action="store_true", help="Mix rule creation/deletion into the load")
    args = parser.parse_args()

    async with QuoteLoadProbe(args.url, args.owner, args.connections, churn=args.churn) as probe:
        await probe.seed(args.seed_rules)
        await probe.run_constant_rate(args.rate, args.duration)
        print_summary(probe.metrics)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Probe interrupted by user")
