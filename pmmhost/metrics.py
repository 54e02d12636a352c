from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Any, List
import pandas as pd

from .config import ONE

@dataclass
class MetricsStore:
    network_rows: List[Dict[str, Any]] = field(default_factory=list)
    pool_rows: List[Dict[str, Any]] = field(default_factory=list)
    failure_counts: Dict[str, int] = field(default_factory=dict)

    def add_network(self, row: Dict[str, Any]) -> None:
        self.network_rows.append(row)

    def add_pool_rows(self, rows: List[Dict[str, Any]]) -> None:
        self.pool_rows.extend(rows)

    def record_failure(self, reason: str) -> None:
        self.failure_counts[reason] = self.failure_counts.get(reason, 0) + 1

    def network_df(self) -> pd.DataFrame:
        return pd.DataFrame(self.network_rows)

    def pool_df(self) -> pd.DataFrame:
        df = pd.DataFrame(self.pool_rows)
        if df.empty:
            return df
        for col in ("price", "oracle_price"):
            if col in df.columns:
                df[col] = df[col].astype(float) / ONE
        return df

    def failures_df(self) -> pd.DataFrame:
        rows = [{"reason": r, "count": n} for r, n in sorted(self.failure_counts.items())]
        return pd.DataFrame(rows, columns=["reason", "count"])
