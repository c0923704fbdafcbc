"""Rolling trend history for the PV / SP / LCV chart.

Fixed-length buffers, pre-filled so a freshly started trend is flat at
the initial values instead of empty.
"""

from collections import deque


class TrendHistory:
    """Keeps the last `length` samples of PV, SP and controller output."""

    SERIES = ("pv", "sp", "lcv")

    def __init__(self, length: int = 100, pv: float = 0.0, sp: float = 0.0, lcv: float = 0.0):
        if length < 1:
            raise ValueError("History length must be at least 1")
        self.length = length
        self._series: dict[str, deque[float]] = {}
        self._total_records = 0
        self.reset(pv, sp, lcv)

    def reset(self, pv: float, sp: float, lcv: float = 0.0):
        """Refill every series with a flat line."""
        initial = {"pv": pv, "sp": sp, "lcv": lcv}
        for name in self.SERIES:
            self._series[name] = deque([initial[name]] * self.length, maxlen=self.length)
        self._total_records = 0

    def fill(self, name: str, value: float):
        """Refill a single series, leaving the others untouched."""
        self._series[name] = deque([value] * self.length, maxlen=self.length)

    def load(self, data: dict[str, list[float]]):
        """Restore series exported by `to_dict()`; short series are front-padded."""
        series = {}
        for name in self.SERIES:
            values = [float(v) for v in (data.get(name) or [0.0])][-self.length:]
            padding = [values[0]] * (self.length - len(values))
            series[name] = deque(padding + values, maxlen=self.length)
        self._series = series
        self._total_records = 0

    def record(self, sample: dict):
        """Append one tick sample (needs process_variable, setpoint, control_output)."""
        self._series["pv"].append(sample["process_variable"])
        self._series["sp"].append(sample["setpoint"])
        self._series["lcv"].append(sample["control_output"])
        self._total_records += 1

    def latest(self) -> dict:
        return {name: series[-1] for name, series in self._series.items()}

    def to_dict(self) -> dict[str, list[float]]:
        return {name: list(series) for name, series in self._series.items()}

    @property
    def total_records(self) -> int:
        return self._total_records
