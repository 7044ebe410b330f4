import json
import logging
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ValidationError

from schemas import ViewMode

logger = logging.getLogger(__name__)


class AppState(BaseModel):
    """Dashboard session state, saved between sessions."""

    selected_event_id: Optional[str] = None
    active_tab: str = "dashboard"
    selected_sector: str = "All"
    view_mode: ViewMode = ViewMode.RAW
    sector_filter: Optional[List[str]] = None


def load_state(path: str) -> AppState:
    state_path = Path(path)
    if not state_path.exists():
        return AppState()
    try:
        return AppState.model_validate(json.loads(state_path.read_text(encoding="utf-8")))
    except (ValueError, ValidationError) as exc:
        logger.warning("ignoring unreadable app state at %s: %s", path, exc)
        return AppState()


def save_state(state: AppState, path: str) -> None:
    state_path = Path(path)
    state_path.parent.mkdir(parents=True, exist_ok=True)
    state_path.write_text(state.model_dump_json(indent=2), encoding="utf-8")
