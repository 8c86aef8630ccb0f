"""
Ambulatory glucose profile: quantile bands by 5-minute bin of the local day.
"""

from typing import Any, Dict, Sequence

from .data_loader import BINS_PER_DAY, LOCAL_TZ, readings_frame
from .models import Reading
from .stats import quantile

AGP_QUANTILES = {
    "p05": 0.05,
    "p25": 0.25,
    "p50": 0.50,
    "p75": 0.75,
    "p95": 0.95,
}


def build_agp(readings: Sequence[Reading], tz=LOCAL_TZ) -> Dict[str, Any]:
    """
    Quantile bands for each of the 288 five-minute bins of the local day.

    Bins without readings hold None in every band.

    Returns:
        dict with tz, stepMin and one list of 288 values per band
    """
    df = readings_frame(readings, tz)
    by_bin = df.groupby("bin")["value"].apply(list).to_dict() if len(df) else {}

    out: Dict[str, Any] = {"tz": str(tz), "stepMin": 5}
    for name, q in AGP_QUANTILES.items():
        out[name] = [quantile(by_bin.get(i, []), q) for i in range(BINS_PER_DAY)]
    out["counts"] = [len(by_bin.get(i, [])) for i in range(BINS_PER_DAY)]
    return out
