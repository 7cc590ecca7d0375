from abc import ABC, abstractmethod

from .models import SystemMetrics


class MonitorBase(ABC):
    @abstractmethod
    def sample(self) -> SystemMetrics:
        """
        Collect and return host metrics at call time.
        Must never raise: an unreadable metric is reported as 0.
        Percentages are 0-100, memory in bytes, uptime in seconds.
        """
        pass
