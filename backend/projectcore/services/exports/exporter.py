import datetime as dt
from pathlib import Path
import pandas as pd

from projectcore.core.config import settings
from projectcore.services.wbs.hierarchy import Hierarchy, flatten

COLUMNS = [
    "wbs_id", "title", "level", "status", "priority", "start_date", "end_date",
    "duration", "progress", "budgeted_cost", "actual_cost", "predecessors", "linked_task_id",
]


def _predecessor_label(preds) -> str:
    short = {"finish_to_start": "FS", "start_to_start": "SS", "finish_to_finish": "FF", "start_to_finish": "SF"}
    out = []
    for p in preds or []:
        code = p.get("wbs_id") or p["predecessor_id"]
        lag = p.get("lag_days") or 0
        out.append(f"{code}{short.get(p.get('relation_type'), 'FS')}{lag:+d}" if lag else f"{code}{short.get(p.get('relation_type'), 'FS')}")
    return ", ".join(out)


def wbs_rows(hierarchy: Hierarchy) -> list[dict]:
    nodes = flatten(hierarchy.roots)
    code_by_id = {n.id: n.wbs_id for n in nodes}
    rows = []
    for n in nodes:
        preds = [dict(p, wbs_id=code_by_id.get(p["predecessor_id"])) for p in (n.get("predecessors") or [])]
        rows.append({
            "wbs_id": n.wbs_id,
            "title": ("    " * n.level) + (n.get("title") or ""),
            "level": n.level,
            "status": n.get("status"),
            "priority": n.get("priority"),
            "start_date": n.get("start_date"),
            "end_date": n.get("end_date"),
            "duration": n.get("duration"),
            "progress": n.get("progress"),
            "budgeted_cost": n.get("budgeted_cost"),
            "actual_cost": n.get("actual_cost"),
            "predecessors": _predecessor_label(preds),
            "linked_task_id": n.get("linked_task_id"),
        })
    return rows


def export_wbs_xlsx(hierarchy: Hierarchy, out_path: Path) -> Path:
    df = pd.DataFrame(wbs_rows(hierarchy), columns=COLUMNS)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    with pd.ExcelWriter(out_path, engine="xlsxwriter") as w:
        df.to_excel(w, index=False, sheet_name="wbs")
    return out_path


def default_export_path(prefix: str, ext: str) -> Path:
    ts = dt.datetime.now(dt.timezone.utc).strftime("%Y%m%d_%H%M%S")
    return Path(settings.EXPORT_DIR) / f"{prefix}_{ts}.{ext}"
