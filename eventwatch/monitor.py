import time

import psutil

from .error_handling import safe_execute
from .models import SystemMetrics
from .monitor_base import MonitorBase


class HostMonitor(MonitorBase):
    """psutil-backed sampler for CPU, memory and upload-disk usage."""

    def __init__(self, upload_dir='./uploads', use_remote_storage=False, cpu_interval=None):
        self.upload_dir = upload_dir
        self.use_remote_storage = use_remote_storage
        self.cpu_interval = cpu_interval
        if not cpu_interval:
            # Non-blocking reads compare against the previous call, so take a baseline now
            self._cpu_percent()

    @safe_execute(default_return=0.0)
    def _cpu_percent(self) -> float:
        return float(min(psutil.cpu_percent(interval=self.cpu_interval), 100.0))

    @safe_execute(default_return=None)
    def _memory(self):
        return psutil.virtual_memory()

    @safe_execute(default_return=0.0)
    def _disk_percent(self) -> float:
        # Remote object storage: local disk pressure is irrelevant
        if self.use_remote_storage:
            return 0.0
        return float(psutil.disk_usage(self.upload_dir).percent)

    @safe_execute(default_return=0.0)
    def _uptime(self) -> float:
        return time.time() - psutil.boot_time()

    def sample(self) -> SystemMetrics:
        mem = self._memory()
        total_memory = int(mem.total) if mem else 0
        free_memory = int(mem.available) if mem else 0
        memory_usage = 0.0
        if total_memory:
            memory_usage = (total_memory - free_memory) / total_memory * 100

        return SystemMetrics(
            cpu_usage=self._cpu_percent(),
            memory_usage=memory_usage,
            disk_usage=self._disk_percent(),
            total_memory=total_memory,
            free_memory=free_memory,
            uptime=self._uptime(),
        )
