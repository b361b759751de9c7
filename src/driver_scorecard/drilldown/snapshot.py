from __future__ import annotations

from dataclasses import dataclass

import pandas as pd

DEFECT_TYPE_COLUMNS = ["key", "label", "count"]
ATTRIBUTION_COLUMNS = ["defect_type", "attribution", "label", "count"]
ATTRIBUTION_SITE_COLUMNS = ["defect_type", "attribution", "site", "count"]
DRIVER_COLUMNS = ["defect_type", "attribution", "site", "driver", "count"]


@dataclass(frozen=True)
class FlowSnapshot:
    """Defect counts by type, root-cause attribution, site and driver.

    ``drivers.defect_type`` is empty for lists shared by every defect type with
    the same attribution key.
    """

    week: str
    defect_types: pd.DataFrame
    attributions: pd.DataFrame
    attribution_sites: pd.DataFrame
    drivers: pd.DataFrame

    def label_for(self, level: str, key: str) -> str:
        if level == "defect_type":
            frame, column = self.defect_types, "key"
        elif level == "attribution":
            frame, column = self.attributions, "attribution"
        else:
            return key
        matches = frame.loc[frame[column] == key, "label"]
        return str(matches.iloc[0]) if not matches.empty else key
