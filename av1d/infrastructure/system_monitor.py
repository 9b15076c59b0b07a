import logging
import psutil
from av1d.domain.models import SystemMetrics

logger = logging.getLogger(__name__)


class SystemMonitor:
    """Host CPU, memory and load telemetry."""

    def __init__(self):
        # Prime the counter; the first non-blocking cpu_percent() call always reports 0.0
        psutil.cpu_percent(interval=None)

    def collect(self) -> SystemMetrics:
        try:
            load_1, load_5, load_15 = psutil.getloadavg()
            return SystemMetrics(
                cpu_usage_percent=psutil.cpu_percent(interval=None),
                mem_usage_percent=psutil.virtual_memory().percent,
                load_avg_1=load_1,
                load_avg_5=load_5,
                load_avg_15=load_15,
            )
        except (OSError, psutil.Error) as e:
            logger.debug(f"System telemetry unavailable: {e}")
            return SystemMetrics()
