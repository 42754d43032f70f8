"""Health checks for the database and the workflow engine."""

import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict

from .logging import get_logger

logger = get_logger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class HealthChecker:
    """Registry of named component checks.

    A check may be sync or async. It passes when it returns normally with
    anything but ``False``; a dict result is merged into the report.
    """

    def __init__(self):
        self.checks: Dict[str, Dict[str, Any]] = {}
        self.last_results: Dict[str, Dict[str, Any]] = {}

    def register_check(self, name: str, check_func: Callable, timeout: float = 5.0):
        self.checks[name] = {"func": check_func, "timeout": timeout}
        logger.debug(f"Registered health check: {name}")

    def clear(self):
        self.checks.clear()
        self.last_results.clear()

    async def run_check(self, name: str) -> Dict[str, Any]:
        """Run a specific health check."""
        if name not in self.checks:
            return {
                "status": "error",
                "message": f"Health check '{name}' not found",
                "timestamp": _now(),
            }

        check_info = self.checks[name]
        start_time = time.time()

        try:
            if asyncio.iscoroutinefunction(check_info["func"]):
                result = await asyncio.wait_for(check_info["func"](), timeout=check_info["timeout"])
            else:
                result = check_info["func"]()

            duration = time.time() - start_time
            check_result = {
                "status": "unhealthy" if result is False else "healthy",
                "message": result if isinstance(result, str) else (
                    "Check failed" if result is False else "Check passed"
                ),
                "duration_ms": round(duration * 1000, 2),
                "timestamp": _now(),
            }
            if isinstance(result, dict):
                check_result.update(result)

        except asyncio.TimeoutError:
            check_result = {
                "status": "timeout",
                "message": f"Health check timed out after {check_info['timeout']}s",
                "duration_ms": round((time.time() - start_time) * 1000, 2),
                "timestamp": _now(),
            }

        except Exception as e:
            logger.warning(f"Health check '{name}' failed: {e}")
            check_result = {
                "status": "unhealthy",
                "message": str(e),
                "error_type": type(e).__name__,
                "duration_ms": round((time.time() - start_time) * 1000, 2),
                "timestamp": _now(),
            }

        self.last_results[name] = check_result
        return check_result

    async def run_all_checks(self) -> Dict[str, Any]:
        """Run all registered health checks."""
        results = {}
        overall_status = "healthy"

        for name in self.checks:
            result = await self.run_check(name)
            results[name] = result
            if result["status"] != "healthy":
                overall_status = "unhealthy"

        return {
            "overall_status": overall_status,
            "checks": results,
            "timestamp": _now(),
        }

    def get_last_results(self) -> Dict[str, Any]:
        return {"checks": self.last_results, "timestamp": _now()}


# Global health checker instance
health_checker = HealthChecker()
