"""Time and record the calls made to an object's methods."""

import time
from functools import wraps

from nlp_util.logconfig import create_logger

LOG = create_logger(__name__)


class ComplexityMonitor:
    """Wrap methods of an object to record the wall time of every call."""

    def __init__(self):
        self.monitor_log: dict[str, list[float]] = {}
        # (object, attribute name, attribute shadowed by the wrapper or None)
        self._wrapped_attributes: list[tuple[object, str, object]] = []

    def register_monitored_object(self, obj, monitored_methods=None, ignored_methods=None):
        """Register an object to monitor its methods.

        Only the names in monitored_methods are wrapped when it is given,
        otherwise every public callable attribute is.
        """
        attribute_names = monitored_methods if monitored_methods is not None else dir(obj)
        for attr_name in attribute_names:
            attr = getattr(obj, attr_name)
            # Skip non-callable attributes and private methods
            if not callable(attr) or attr_name.startswith("_"):
                continue
            # Skip ignored methods
            if ignored_methods and attr_name in ignored_methods:
                continue
            self._wrapped_attributes.append((obj, attr_name, vars(obj).get(attr_name)))
            setattr(obj, attr_name, self._monitor_function(attr))

    def release_monitored_objects(self):
        """Restore every wrapped method, the recorded statistics are kept."""
        for obj, attr_name, shadowed_attr in reversed(self._wrapped_attributes):
            if shadowed_attr is None:
                delattr(obj, attr_name)
            else:
                setattr(obj, attr_name, shadowed_attr)
        self._wrapped_attributes.clear()

    def _monitor_function(self, func):
        """Decorator to record the execution time of func."""

        @wraps(func)
        def wrapper(*args, **kwargs):
            start_time = time.perf_counter()
            try:
                return func(*args, **kwargs)
            finally:
                elapsed_time = time.perf_counter() - start_time
                self.monitor_log.setdefault(func.__name__, []).append(elapsed_time)

        return wrapper

    def get_statistics(self) -> dict[str, tuple[int, float, float]]:
        """Get call count, total time and average time per monitored function."""
        return {
            func_name: (len(times), sum(times), sum(times) / len(times))
            for func_name, times in self.monitor_log.items()
        }

    def report_complexity(self):
        """Logs a report of monitored function complexities."""
        report_msg = ["\nComplexity Monitoring Report:"]
        for func_name, (num_calls, total_time, avg_time) in self.get_statistics().items():
            report_msg.append(
                f"{func_name}: called {num_calls} times | total execution time: {total_time:.6f}s | "
                f"average execution time: {avg_time:.6f}"
            )
        LOG.info("\n".join(report_msg))
